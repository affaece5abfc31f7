from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from cachetools import TTLCache

from smartread.ai_service import StudyAI
from smartread.audio import AudioEngine
from smartread.exceptions import InvalidTransitionError
from smartread.narration import ParagraphNarrator
from smartread.outline import OutlinePhase
from smartread.schemas import Phase, new_id
from smartread.selection import LocalSpeech, NullLocalSpeech, SelectionController
from smartread.session import LearningSession
from smartread.vocab_flow import VocabLearningFlow
from smartread.workshop import Workshop
from smartread.writing_coach import WritingCoach

logger = logging.getLogger(__name__)


@dataclass
class SessionRuntime:
    """
    One learner's session plus the phase controllers that are alive for the
    current phase. Controllers are created on phase entry and dropped on exit.
    """

    session: LearningSession
    engine: AudioEngine
    ai: StudyAI
    local_speech: LocalSpeech = field(default_factory=NullLocalSpeech)
    outline: OutlinePhase | None = None
    vocab_flow: VocabLearningFlow | None = None
    selection: SelectionController | None = None
    narrator: ParagraphNarrator | None = None
    workshop: Workshop | None = None
    coach: WritingCoach | None = None

    def __post_init__(self) -> None:
        self.session.add_listener(self._on_phase)

    def _on_phase(self, old: Phase, new: Phase) -> None:
        if old is Phase.outline and self.outline is not None:
            self.outline.stop()
            self.outline = None
        elif old is Phase.vocab_learning and self.vocab_flow is not None:
            self.engine.selection.stop()
            self.vocab_flow = None
        elif old is Phase.reading:
            if self.selection is not None:
                self.selection.close()
            if self.narrator is not None:
                self.narrator.stop()
            self.selection = None
            self.narrator = None
        elif old is Phase.workshop:
            if self.workshop is not None:
                self.workshop.close()
            self.workshop = None
            self.coach = None

        if new is Phase.compose:
            self.engine.stop_all()
        elif new is Phase.outline:
            self.outline = OutlinePhase(self.session, self.ai, self.engine)
        elif new is Phase.vocab_learning:
            self.vocab_flow = VocabLearningFlow(
                self.session.article, self.ai, self.engine, local_speech=self.local_speech
            )
        elif new is Phase.reading:
            self.selection = SelectionController(
                self.session.article,
                self.ai,
                self.engine,
                on_add_vocab=self.session.add_vocab,
                on_add_note=self.session.add_note,
                local_speech=self.local_speech,
            )
            self.narrator = ParagraphNarrator(self.ai, self.engine)
        elif new is Phase.workshop:
            self.workshop = Workshop(self.session.snapshot(), self.ai, on_enriched=self.session.enrich_vocab)

    def require(self, name: str, operation: str):
        """The named controller, or InvalidTransitionError if its phase is not active."""
        controller = getattr(self, name)
        if controller is None:
            raise InvalidTransitionError(self.session.phase.value, operation)
        return controller


class _RuntimeCache(TTLCache):
    """TTLCache that closes a runtime's audio engine when it expires or is evicted."""

    def expire(self, now=None):
        expired = super().expire(now)
        for session_id, runtime in expired:
            logger.info("Session %s expired", session_id)
            runtime.engine.close()
        return expired

    def popitem(self):
        session_id, runtime = super().popitem()
        logger.info("Session %s evicted", session_id)
        runtime.engine.close()
        return session_id, runtime


class SessionStore:
    def __init__(self, *, maxsize: int = 10_000, ttl_seconds: int = 60 * 60, timer=time.monotonic) -> None:
        self._cache: _RuntimeCache = _RuntimeCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    def create(self, runtime: SessionRuntime) -> str:
        session_id = new_id("session")
        self._cache[session_id] = runtime
        logger.info("Created session %s", session_id)
        return session_id

    def get(self, session_id: str) -> SessionRuntime | None:
        return self._cache.get(session_id)

    def touch(self, session_id: str) -> SessionRuntime | None:
        """Fetch and re-insert so active sessions do not expire."""
        runtime = self._cache.get(session_id)
        if runtime is not None:
            self._cache[session_id] = runtime
        return runtime

    def drop(self, session_id: str) -> bool:
        runtime = self._cache.pop(session_id, None)
        if runtime is None:
            return False
        runtime.engine.close()
        return True

    def __len__(self) -> int:
        return len(self._cache)
