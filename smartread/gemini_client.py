from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

from google import genai
from google.genai import types
from pydantic import BaseModel

from smartread.config import Settings
from smartread.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

FALLBACK_TEXT_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
]


def _is_model_not_found(err: Exception) -> bool:
    msg = str(err)
    return (
        "NOT_FOUND" in msg
        and ("was not found" in msg or "not found" in msg or "is not found" in msg)
        and ("Publisher Model" in msg or "models/" in msg or "Call ListModels" in msg)
    )


class GeminiClient:
    """
    Thin async transport over google-genai. Every public method returns None on
    failure (timeout, provider error, safety block, unusable response) so that
    callers can apply their own fallback.

    Supports two modes:
    - API key mode (local/dev): GOOGLE_API_KEY / GEMINI_API_KEY
    - Vertex AI mode: GOOGLE_CLOUD_PROJECT + GOOGLE_CLOUD_LOCATION
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self.settings = settings
        self.model = settings.model
        self.timeout = settings.request_timeout

        if client is not None:
            self.client = client
        elif settings.api_key:
            self.client = genai.Client(api_key=settings.api_key)
        elif settings.project:
            # Uses ADC (service account) on Cloud Run
            self.client = genai.Client(vertexai=True, project=settings.project, location=settings.location)
        else:
            raise ConfigurationError(
                "Missing config: set GOOGLE_API_KEY (local) or GOOGLE_CLOUD_PROJECT (+ optional GOOGLE_CLOUD_LOCATION) (Vertex)."
            )

    async def _generate(self, *, model: str, contents: Any, config: types.GenerateContentConfig | None) -> Any:
        candidates = [model] + [m for m in FALLBACK_TEXT_MODELS if m != model]
        last_err: Exception | None = None
        for m in candidates:
            try:
                return await asyncio.wait_for(
                    self.client.aio.models.generate_content(model=m, contents=contents, config=config),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Gemini call timed out after %.1fs (model=%s)", self.timeout, m)
                return None
            except Exception as e:
                last_err = e
                # Only retry text models on lookup/access style failures.
                if _is_model_not_found(e) and model == self.model:
                    logger.info("Model %s unavailable, trying next candidate", m)
                    continue
                logger.warning("Gemini call failed (model=%s): %s", m, e)
                return None
        logger.error("All model candidates failed. Last error: %s", last_err)
        return None

    async def generate_text(self, prompt: str, *, system: str | None = None, model: str | None = None) -> str | None:
        config = types.GenerateContentConfig(system_instruction=system) if system else None
        resp = await self._generate(model=model or self.model, contents=prompt, config=config)
        if resp is None:
            return None
        text = (getattr(resp, "text", None) or "").strip()
        return text or None

    async def generate_json(
        self,
        prompt: str,
        *,
        schema: dict[str, Any] | type[BaseModel],
        system: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Uses response_schema to strongly bias well-formed JSON output.
        """
        config = types.GenerateContentConfig(
            system_instruction=system,
            response_mime_type="application/json",
            response_schema=schema,
            temperature=0.4,
        )
        resp = await self._generate(model=model or self.model, contents=prompt, config=config)
        if resp is None:
            return None

        # google-genai returns parsed JSON in resp.parsed when schema is provided.
        parsed = getattr(resp, "parsed", None)
        if isinstance(parsed, BaseModel):
            return parsed.model_dump()
        if isinstance(parsed, dict):
            return parsed

        text = (getattr(resp, "text", None) or "").strip()
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Model did not return JSON. Raw: %s", text[:500])
            return None
        return data if isinstance(data, dict) else None

    async def synthesize_speech(self, text: str) -> str | None:
        """
        Returns the base64-encoded 16-bit PCM payload, or None when no audio came back.
        """
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.settings.voice),
                )
            ),
        )
        resp = await self._generate(model=self.settings.tts_model, contents=text, config=config)
        candidate = _first_candidate(resp)
        if candidate is None:
            logger.warning("synthesize_speech: no candidate returned (%d chars)", len(text))
            return None
        if _blocked_by_safety(candidate):
            logger.warning("synthesize_speech: blocked by safety filter (%d chars)", len(text))
            return None
        for part in _parts(candidate):
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None)
            if data:
                return data if isinstance(data, str) else base64.b64encode(data).decode("ascii")
        logger.warning(
            "synthesize_speech: no audio inline data (finish_reason=%s)", getattr(candidate, "finish_reason", None)
        )
        return None

    async def generate_image(self, prompt: str, *, aspect_ratio: str = "16:9") -> str | None:
        """
        Returns a `data:` URL for the first inline image, or None.
        """
        config = types.GenerateContentConfig(image_config=types.ImageConfig(aspect_ratio=aspect_ratio))
        resp = await self._generate(model=self.settings.image_model, contents=prompt, config=config)
        candidate = _first_candidate(resp)
        if candidate is None:
            return None
        for part in _parts(candidate):
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None)
            if data:
                encoded = data if isinstance(data, str) else base64.b64encode(data).decode("ascii")
                mime = getattr(inline, "mime_type", None) or "image/png"
                return f"data:{mime};base64,{encoded}"
        return None


def _first_candidate(resp: Any) -> Any | None:
    if resp is None:
        return None
    candidates = getattr(resp, "candidates", None) or []
    return candidates[0] if candidates else None


def _blocked_by_safety(candidate: Any) -> bool:
    reason = getattr(candidate, "finish_reason", None)
    return reason is not None and "SAFETY" in str(getattr(reason, "name", reason))


def _parts(candidate: Any) -> list[Any]:
    content = getattr(candidate, "content", None)
    return list(getattr(content, "parts", None) or [])
