from __future__ import annotations

import logging
from typing import Literal

from smartread.ai_service import StudyAI
from smartread.audio import AudioEngine
from smartread.exceptions import AudioDecodeError
from smartread.schemas import Article, QuizQuestion, Vocabulary
from smartread.selection import LocalSpeech, NullLocalSpeech

logger = logging.getLogger(__name__)

Stage = Literal["loading", "learning", "quiz", "result", "empty"]


class VocabLearningFlow:
    """
    Word cards, then the quiz, then a result screen. The quiz is generated
    alongside the vocabulary and discarded with the flow.
    """

    def __init__(
        self,
        article: Article,
        ai: StudyAI,
        engine: AudioEngine,
        *,
        local_speech: LocalSpeech | None = None,
    ) -> None:
        self.article = article
        self.ai = ai
        self.engine = engine
        self.local_speech = local_speech or NullLocalSpeech()

        self.stage: Stage = "loading"
        self.vocab_list: list[Vocabulary] = []
        self.questions: list[QuizQuestion] = []
        self.current_index = 0
        self.quiz_index = 0
        self.selected_answer: str | None = None
        self.is_answered = False
        self.score = 0
        self.is_playing_audio = False

    async def load(self) -> Stage:
        self.stage = "loading"
        self.vocab_list = await self.ai.extract_vocabulary(self.article.content)
        self.questions = await self.ai.generate_quiz(self.vocab_list) if self.vocab_list else []
        logger.info("Vocabulary flow loaded %d words, %d questions", len(self.vocab_list), len(self.questions))
        self.start(self.vocab_list, self.questions)
        return self.stage

    def start(self, vocab: list[Vocabulary], questions: list[QuizQuestion]) -> None:
        self.vocab_list = list(vocab)
        self.questions = list(questions)
        self.current_index = 0
        self.quiz_index = 0
        self.selected_answer = None
        self.is_answered = False
        self.score = 0
        self.stage = "learning" if self.vocab_list else "empty"

    # --- learning ---

    @property
    def current(self) -> Vocabulary | None:
        if self.stage != "learning" or not self.vocab_list:
            return None
        return self.vocab_list[self.current_index]

    @property
    def learning_percent(self) -> int:
        if not self.vocab_list:
            return 0
        return round(self.current_index / len(self.vocab_list) * 100)

    def jump(self, index: int) -> None:
        if self.stage != "learning":
            return
        if not 0 <= index < len(self.vocab_list):
            raise IndexError(index)
        self.current_index = index

    def next(self) -> Stage:
        if self.stage != "learning":
            return self.stage
        if self.current_index < len(self.vocab_list) - 1:
            self.current_index += 1
        else:
            self._enter_quiz()
        return self.stage

    def _enter_quiz(self) -> None:
        self.quiz_index = 0
        self.selected_answer = None
        self.is_answered = False
        self.stage = "quiz" if self.questions else "result"

    # --- quiz ---

    @property
    def current_question(self) -> QuizQuestion | None:
        if self.stage != "quiz" or not self.questions:
            return None
        return self.questions[self.quiz_index]

    @property
    def last_answer_correct(self) -> bool | None:
        question = self.current_question
        if question is None or not self.is_answered:
            return None
        return self.selected_answer == question.correctAnswer

    def answer(self, choice: str) -> bool | None:
        """Accepted once per question; later calls before next_question() are ignored."""
        question = self.current_question
        if question is None or self.is_answered:
            return None
        self.selected_answer = choice
        self.is_answered = True
        correct = choice == question.correctAnswer
        if correct:
            self.score += 1
        return correct

    def next_question(self) -> Stage:
        if self.stage != "quiz":
            return self.stage
        if self.quiz_index < len(self.questions) - 1:
            self.quiz_index += 1
            self.selected_answer = None
            self.is_answered = False
        else:
            self.stage = "result"
        return self.stage

    @property
    def percentage(self) -> int:
        if not self.questions:
            return 0
        return round(self.score / len(self.questions) * 100)

    # --- exit ---

    def complete(self) -> list[Vocabulary]:
        """Vocabulary to hand back to the session; available from any stage once loaded."""
        self.engine.selection.stop()
        self.local_speech.cancel()
        return list(self.vocab_list)

    async def play_word_audio(self, word: str) -> bool:
        word = (word or "").strip()
        if not word:
            return False
        if self.local_speech.speak(word):
            return True
        if self.is_playing_audio:
            return False

        self.is_playing_audio = True
        try:
            payload = await self.ai.synthesize_speech(word)
            if not payload:
                return False
            try:
                self.engine.selection.play_payload(payload, sample_rate=self.engine.sample_rate)
            except AudioDecodeError as e:
                logger.warning("Word audio decode error: %s", e)
                return False
            return True
        finally:
            self.is_playing_audio = False
