from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str | None = None) -> str | None:
    val = os.environ.get(name)
    if val is None or val.strip() == "":
        return default
    return val


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration. Gemini supports two modes:
    - API key mode (local/dev): GOOGLE_API_KEY or GEMINI_API_KEY
    - Vertex AI mode: GOOGLE_CLOUD_PROJECT + GOOGLE_CLOUD_LOCATION
    """

    api_key: str | None = None
    project: str | None = None
    location: str = "us-central1"

    model: str = "gemini-3-flash-preview"
    pro_model: str = "gemini-3-pro-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    image_model: str = "gemini-2.5-flash-image"
    voice: str = "Kore"

    request_timeout: float = 30.0
    sample_rate: int = 24000
    usage_url: str | None = None
    session_ttl_seconds: int = 60 * 60

    log_level: str = "INFO"
    log_dir: str | None = None
    port: int = 8080

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.project)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=_env("GOOGLE_API_KEY") or _env("GEMINI_API_KEY"),
            project=_env("GOOGLE_CLOUD_PROJECT"),
            location=_env("GOOGLE_CLOUD_LOCATION", "us-central1") or "us-central1",
            model=_env("GEMINI_MODEL", cls.model) or cls.model,
            pro_model=_env("GEMINI_PRO_MODEL", cls.pro_model) or cls.pro_model,
            tts_model=_env("GEMINI_TTS_MODEL", cls.tts_model) or cls.tts_model,
            image_model=_env("GEMINI_IMAGE_MODEL", cls.image_model) or cls.image_model,
            voice=_env("GEMINI_VOICE", cls.voice) or cls.voice,
            request_timeout=_env_float("SMARTREAD_REQUEST_TIMEOUT", cls.request_timeout),
            sample_rate=_env_int("SMARTREAD_SAMPLE_RATE", cls.sample_rate),
            usage_url=_env("SMARTREAD_USAGE_URL"),
            session_ttl_seconds=_env_int("SMARTREAD_SESSION_TTL", cls.session_ttl_seconds),
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
            log_dir=_env("LOG_DIR"),
            port=_env_int("PORT", cls.port),
        )
