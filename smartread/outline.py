from __future__ import annotations

import logging
from typing import Literal

from smartread.ai_service import StudyAI
from smartread.audio import AudioEngine
from smartread.exceptions import AudioDecodeError
from smartread.schemas import OUTLINE_SECTION_TITLES, Phase, VideoScript
from smartread.session import LearningSession

logger = logging.getLogger(__name__)

OutlineStatus = Literal["idle", "scripting", "ready", "error"]

SCRIPT_FAILED = "脚本生成失败，请检查 API Key 或稍后再试。"
AUDIO_FAILED = "音频生成失败，请稍后再试。"


class OutlinePhase:
    """
    Guided-reading outline. The script is generated once per article and cached
    on the session; section lectures play on the narration slot.
    """

    def __init__(self, session: LearningSession, ai: StudyAI, engine: AudioEngine) -> None:
        if session.article is None:
            raise ValueError("Outline phase needs an article")
        self.session = session
        self.article = session.article
        self.ai = ai
        self.engine = engine
        self.slot = engine.narration

        self.status: OutlineStatus = "idle"
        self.script: VideoScript | None = None
        self.error_message: str | None = None
        self.cover_image: str | None = None
        self._playing_key: str | None = None
        self.loading_key: str | None = None
        self._token = 0
        self._generation = 0

        cached = session.cached_outline()
        if cached is not None:
            self.script = cached
            self.status = "ready"

    @property
    def playing_key(self) -> str | None:
        return self._playing_key if self.slot.is_playing else None

    async def load_cover(self) -> str | None:
        self.cover_image = await self.ai.cover_image(self.article.title, self.article.content)
        return self.cover_image

    def _is_current(self, generation: int) -> bool:
        return (
            generation == self._generation
            and self.session.article is self.article
            and self.session.phase is Phase.outline
        )

    async def generate(self) -> OutlineStatus:
        self._generation += 1
        generation = self._generation
        if self.script is not None:
            if self._is_current(generation):
                self.session.set_outline(self.script, self.article)
            self.status = "ready"
            return self.status

        self.status = "scripting"
        self.error_message = None
        script = await self.ai.video_script(self.article.content)
        if not self._is_current(generation):
            logger.debug("Dropping outline for %r: superseded", self.article.title)
            return self.status
        if script is None:
            self.status = "error"
            self.error_message = SCRIPT_FAILED
            return self.status
        self.script = script
        self.session.set_outline(script, self.article)
        self.status = "ready"
        logger.info("Outline ready for %r", self.article.title)
        return self.status

    async def play_section(self, key: str) -> bool:
        if self.script is None or key not in OUTLINE_SECTION_TITLES:
            return False
        if self.playing_key == key:
            self.stop()
            return True

        self.stop()
        self._token += 1
        token = self._token
        self.loading_key = key
        try:
            lecture = await self.ai.outline_explanation(
                OUTLINE_SECTION_TITLES[key], getattr(self.script, key), self.article.title
            )
            payload = await self.ai.synthesize_speech(lecture)
            if token != self._token:
                return False
            if not payload:
                self.error_message = AUDIO_FAILED
                return False
            try:
                self.slot.play_payload(payload, sample_rate=self.engine.sample_rate)
            except AudioDecodeError as e:
                logger.warning("Outline lecture decode error: %s", e)
                self.error_message = AUDIO_FAILED
                return False
            self._playing_key = key
            return True
        finally:
            if token == self._token:
                self.loading_key = None

    def stop(self) -> None:
        self._token += 1
        self._generation += 1
        self.slot.stop()
        self._playing_key = None
        self.loading_key = None
