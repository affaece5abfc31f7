from __future__ import annotations

import logging
from typing import Callable, Iterable

from smartread.exceptions import InvalidTransitionError
from smartread.schemas import Article, Note, Phase, SessionSnapshot, VideoScript, Vocabulary
from smartread.usage import NoopUsageRecorder, UsageRecorder

logger = logging.getLogger(__name__)

PhaseListener = Callable[[Phase, Phase], None]


class LearningSession:
    """
    Owns the session aggregates (article, vocabulary, notes, cached outline) and
    the current phase. All mutation goes through the methods below; the lists
    are only exposed as tuples.

    Flow: COMPOSE -> OUTLINE -> (VOCAB_LEARNING ->) READING -> WORKSHOP, with
    reset() returning to COMPOSE from anywhere.
    """

    def __init__(self, usage: UsageRecorder | None = None) -> None:
        self.usage = usage or NoopUsageRecorder()
        self.phase = Phase.compose
        self.sidebar_open = True
        self._article: Article | None = None
        self._vocab: list[Vocabulary] = []
        self._notes: list[Note] = []
        self._outline: VideoScript | None = None
        self._outline_article: Article | None = None
        self._listeners: list[PhaseListener] = []

    # --- read access ---

    @property
    def article(self) -> Article | None:
        return self._article

    @property
    def vocab_list(self) -> tuple[Vocabulary, ...]:
        return tuple(self._vocab)

    @property
    def note_list(self) -> tuple[Note, ...]:
        return tuple(self._notes)

    @property
    def outline(self) -> VideoScript | None:
        return self._outline

    def cached_outline(self) -> VideoScript | None:
        """The outline, but only if it was generated for the current article."""
        if self._outline is not None and self._outline_article == self._article:
            return self._outline
        return None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self.phase,
            sidebarOpen=self.sidebar_open,
            article=self._article,
            vocabList=list(self._vocab),
            noteList=list(self._notes),
            outline=self._outline,
        )

    def add_listener(self, callback: PhaseListener) -> None:
        self._listeners.append(callback)

    # --- helpers ---

    def _require(self, operation: str, *allowed: Phase) -> None:
        if self.phase not in allowed:
            logger.warning("Rejected %s in phase %s", operation, self.phase.value)
            raise InvalidTransitionError(self.phase.value, operation)

    def _enter(self, phase: Phase) -> None:
        previous = self.phase
        self.phase = phase
        logger.info("Phase %s -> %s", previous.value, phase.value)
        if phase is Phase.reading and previous is not Phase.reading:
            self.usage.record()
        for cb in list(self._listeners):
            cb(previous, phase)

    # --- transitions ---

    def complete(self, article: Article) -> None:
        self._require("complete", Phase.compose)
        self._article = article
        self._enter(Phase.outline)

    def back_to_compose(self) -> None:
        # The article stays so the editor can be pre-filled; complete() replaces it.
        self._require("back_to_compose", Phase.outline)
        self._enter(Phase.compose)

    def start_reading(self) -> None:
        self._require("start_reading", Phase.outline, Phase.vocab_learning)
        self._enter(Phase.reading)

    def start_vocab(self) -> None:
        self._require("start_vocab", Phase.outline)
        self._enter(Phase.vocab_learning)

    def back_to_outline(self) -> None:
        self._require("back_to_outline", Phase.reading, Phase.vocab_learning)
        self._enter(Phase.outline)

    def complete_vocab(self, learned: Iterable[Vocabulary]) -> None:
        self._require("complete_vocab", Phase.vocab_learning)
        learned = list(learned)
        self._vocab.extend(learned)
        logger.info("Added %d learned words", len(learned))
        self._enter(Phase.reading)

    def finish_reading(self) -> None:
        self._require("finish_reading", Phase.reading)
        self.sidebar_open = False
        self._enter(Phase.workshop)

    def reset(self) -> None:
        previous = self.phase
        self._article = None
        self._vocab = []
        self._notes = []
        self._outline = None
        self._outline_article = None
        self.sidebar_open = True
        if previous is Phase.compose:
            logger.info("Session reset")
            return
        self._enter(Phase.compose)

    # --- aggregate mutation ---

    def set_outline(self, outline: VideoScript, article: Article) -> None:
        """Cache `outline` as generated for `article`; it is only served back while that article is current."""
        self._require("set_outline", Phase.outline)
        self._outline = outline
        self._outline_article = article

    def add_vocab(self, vocab: Vocabulary) -> None:
        self._require("add_vocab", Phase.reading)
        self._vocab.append(vocab)

    def add_note(self, note: Note) -> None:
        self._require("add_note", Phase.reading)
        self._notes.append(note)

    def update_note(self, note_id: str, *, ai_analysis: str | None = None, user_comment: str | None = None) -> Note:
        self._require("update_note", Phase.reading)
        for i, note in enumerate(self._notes):
            if note.id != note_id:
                continue
            update: dict[str, str] = {}
            if ai_analysis is not None:
                update["aiAnalysis"] = ai_analysis
            if user_comment is not None:
                update["userComment"] = user_comment
            updated = note.model_copy(update=update)
            self._notes[i] = updated
            return updated
        raise KeyError(note_id)

    def remove_vocab(self, vocab_id: str) -> bool:
        self._require("remove_vocab", Phase.reading)
        before = len(self._vocab)
        self._vocab = [v for v in self._vocab if v.id != vocab_id]
        return len(self._vocab) != before

    def remove_note(self, note_id: str) -> bool:
        self._require("remove_note", Phase.reading)
        before = len(self._notes)
        self._notes = [n for n in self._notes if n.id != note_id]
        return len(self._notes) != before

    def enrich_vocab(self, enriched: Iterable[Vocabulary]) -> None:
        """
        Attach missing fields to existing entries, matched on `word`. Existing
        values are kept and no entries are added or dropped.
        """
        by_word: dict[str, Vocabulary] = {}
        for v in enriched:
            by_word.setdefault(v.word, v)
        self._vocab = [v.enriched_with(by_word[v.word]) if v.word in by_word else v for v in self._vocab]

    def toggle_sidebar(self) -> bool:
        self.sidebar_open = not self.sidebar_open
        return self.sidebar_open
