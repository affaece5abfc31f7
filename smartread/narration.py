from __future__ import annotations

import logging
import math

from smartread.ai_service import StudyAI
from smartread.audio import AudioEngine
from smartread.exceptions import AudioDecodeError

logger = logging.getLogger(__name__)

SYNTHESIS_FAILED = "音频生成失败，请稍后重试。"


def read_boundary(text: str, progress: float) -> int:
    """Characters of `text` counted as read at `progress` (proportional mapping)."""
    progress = min(max(progress, 0.0), 1.0)
    return math.floor(len(text) * progress)


class ParagraphNarrator:
    """
    Per-paragraph narration on the engine's narration slot. Activating another
    paragraph supersedes any synthesis still in flight for the previous one.
    """

    def __init__(self, ai: StudyAI, engine: AudioEngine, *, auto_restart: bool = False) -> None:
        self.ai = ai
        self.engine = engine
        self.slot = engine.narration
        self.slot.auto_restart = auto_restart
        self.active_index: int | None = None
        self.is_loading = False
        self.error: str | None = None
        self._token = 0

    @property
    def auto_restart(self) -> bool:
        return self.slot.auto_restart

    @auto_restart.setter
    def auto_restart(self, value: bool) -> None:
        self.slot.auto_restart = value

    @property
    def is_playing(self) -> bool:
        return self.slot.is_playing

    @property
    def progress(self) -> float:
        if self.active_index is None or self.is_loading:
            return 0.0
        return self.slot.progress

    def boundary_for(self, index: int, text: str) -> int:
        if index != self.active_index:
            return 0
        return read_boundary(text, self.progress)

    async def toggle(self, index: int, text: str) -> bool:
        if index != self.active_index:
            return await self._activate(index, text)
        if self.is_loading:
            return True
        if self.slot.is_playing:
            self.slot.pause()
        else:
            self.slot.resume()
        return True

    async def _activate(self, index: int, text: str) -> bool:
        self.slot.stop()
        self._token += 1
        token = self._token
        self.active_index = index
        self.is_loading = True
        self.error = None

        payload = await self.ai.synthesize_speech(text)
        if token != self._token:
            logger.debug("Discarding stale narration for paragraph %d", index)
            return False

        self.is_loading = False
        if not payload:
            return self._fail(index, SYNTHESIS_FAILED)
        try:
            self.slot.play_payload(payload, sample_rate=self.engine.sample_rate)
        except AudioDecodeError as e:
            logger.warning("Narration decode failed for paragraph %d: %s", index, e)
            return self._fail(index, SYNTHESIS_FAILED)
        return True

    def _fail(self, index: int, message: str) -> bool:
        logger.info("Narration for paragraph %d aborted: %s", index, message)
        self.active_index = None
        self.error = message
        return False

    def restart(self, index: int) -> bool:
        if index != self.active_index or self.is_loading or self.slot.buffer is None:
            return False
        self.slot.restart()
        return True

    def stop(self) -> None:
        self._token += 1
        self.slot.stop()
        self.active_index = None
        self.is_loading = False
