from __future__ import annotations

import re
import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


class Phase(str, Enum):
    compose = "COMPOSE"
    outline = "OUTLINE"
    vocab_learning = "VOCAB_LEARNING"
    reading = "READING"
    workshop = "WORKSHOP"


class Article(BaseModel):
    title: str
    content: str
    paragraphs: list[str]

    @classmethod
    def from_text(cls, title: str, content: str) -> "Article":
        paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(content)]
        return cls(title=title, content=content, paragraphs=[p for p in paragraphs if p])


class Vocabulary(BaseModel):
    id: str = Field(default_factory=lambda: new_id("vocab"))
    word: str = Field(..., min_length=1)
    pinyin: str | None = None
    definition: str = ""
    context: str = ""
    imageUrl: str | None = None
    exampleSentence: str | None = None
    partOfSpeech: str | None = None
    difficulty: Literal[1, 2, 3] | None = None
    contextHint: str | None = None

    @field_validator("difficulty", mode="before")
    @classmethod
    def _coerce_difficulty(cls, value: Any) -> int | None:
        # The generator answers with JSON numbers such as 2.0.
        if value is None or value == "":
            return None
        try:
            level = int(round(float(value)))
        except (TypeError, ValueError):
            return None
        return level if level in (1, 2, 3) else None

    def enriched_with(self, extra: "Vocabulary | dict[str, Any]") -> "Vocabulary":
        """
        Non-destructive merge: only fields that are currently absent are filled.
        `id` and `word` are never replaced.
        """
        data = extra.model_dump() if isinstance(extra, Vocabulary) else dict(extra)
        update: dict[str, Any] = {}
        for name in type(self).model_fields:
            if name in ("id", "word"):
                continue
            current = getattr(self, name)
            incoming = data.get(name)
            if current in (None, "") and incoming not in (None, ""):
                update[name] = incoming
        if not update:
            return self
        return type(self).model_validate({**self.model_dump(), **update})


class Note(BaseModel):
    id: str = Field(default_factory=lambda: new_id("note"))
    selectedText: str = Field(..., min_length=1)
    aiAnalysis: str
    userComment: str | None = None


OUTLINE_SECTION_TITLES: dict[str, str] = {
    "intro": "开头",
    "framework": "文章大框架",
    "highlights": "结构亮点",
    "emotion": "情绪路径",
    "theme": "主旨",
    "transfer": "迁移",
}


class VideoScript(BaseModel):
    intro: str
    framework: str
    highlights: str
    emotion: str
    theme: str
    transfer: str

    def sections(self) -> list[tuple[str, str, str]]:
        return [(key, title, getattr(self, key)) for key, title in OUTLINE_SECTION_TITLES.items()]


class QuizQuestion(BaseModel):
    id: str = Field(default_factory=lambda: new_id("quiz"))
    type: Literal["choice", "judge"]
    question: str
    options: list[str] | None = None
    correctAnswer: str
    explanation: str = ""
    relatedWord: str = ""


class GeneratedExercise(BaseModel):
    clozeText: str = ""
    originalClozeText: str | None = None
    writingPrompt: str = ""
    writingTips: list[str] = Field(default_factory=list)


class ChatMessage(BaseModel):
    role: Literal["user", "ai"]
    text: str


class WritingGuidance(BaseModel):
    reply: str
    draftContent: str | None = None


class SessionSnapshot(BaseModel):
    phase: Phase
    sidebarOpen: bool = True
    article: Article | None = None
    vocabList: list[Vocabulary] = Field(default_factory=list)
    noteList: list[Note] = Field(default_factory=list)
    outline: VideoScript | None = None


# --- Generation response shapes (validated at the capability boundary) ---


class ExtractedWord(BaseModel):
    word: str = Field(..., min_length=1)
    pinyin: str | None = None
    definition: str = ""
    partOfSpeech: str | None = None
    difficulty: float | None = None
    exampleSentence: str | None = None
    contextHint: str | None = None
    context: str | None = None


class ExtractedVocabulary(BaseModel):
    words: list[ExtractedWord] = Field(default_factory=list)


class GeneratedQuiz(BaseModel):
    questions: list[QuizQuestion] = Field(default_factory=list)


class DraftVideoScript(BaseModel):
    intro: str | None = None
    framework: str | None = None
    highlights: str | None = None
    emotion: str | None = None
    theme: str | None = None
    transfer: str | None = None


class EnrichedWord(BaseModel):
    word: str
    pinyin: str | None = None
    definition: str | None = None
    partOfSpeech: str | None = None
    difficulty: float | None = None
    exampleSentence: str | None = None


class EnrichedVocabulary(BaseModel):
    enriched: list[EnrichedWord] = Field(default_factory=list)


# --- HTTP surface ---


class SessionCreatedResponse(BaseModel):
    sessionId: str
    phase: Phase


class ComposeFormatRequest(BaseModel):
    content: str = Field(..., min_length=1)
    useAi: bool = Field(True, description="Proofread with the generator before local formatting")


class ComposeFormatResponse(BaseModel):
    content: str


class ComposeCompleteRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class OutlineResponse(BaseModel):
    status: Literal["idle", "scripting", "ready", "error"]
    outline: VideoScript | None = None
    errorMessage: str | None = None
    coverImage: str | None = None


class QuizQuestionView(BaseModel):
    """A quiz question as sent to the learner; the key is withheld until answered."""

    id: str
    type: Literal["choice", "judge"]
    question: str
    options: list[str] | None = None
    relatedWord: str = ""
    correctAnswer: str | None = None
    explanation: str | None = None

    @classmethod
    def of(cls, question: QuizQuestion, *, reveal: bool) -> "QuizQuestionView":
        data = question.model_dump()
        if not reveal:
            data.pop("correctAnswer")
            data.pop("explanation")
        return cls(**data)


class VocabFlowResponse(BaseModel):
    stage: Literal["loading", "learning", "quiz", "result", "empty"]
    vocabList: list[Vocabulary] = Field(default_factory=list)
    currentIndex: int = 0
    quizIndex: int = 0
    questionCount: int = 0
    currentQuestion: QuizQuestionView | None = None
    selectedAnswer: str | None = None
    isAnswered: bool = False
    lastAnswerCorrect: bool | None = None
    score: int = 0
    percentage: int = 0


class JumpRequest(BaseModel):
    index: int = Field(..., ge=0)


class AnswerRequest(BaseModel):
    choice: str


class AnchorRect(BaseModel):
    left: float = 0.0
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0


class SelectRequest(BaseModel):
    text: str
    rect: AnchorRect = Field(default_factory=AnchorRect)


class SelectionResponse(BaseModel):
    text: str | None = None
    pinyin: str | None = None
    analysisStatus: Literal["idle", "loading", "ready", "error"] = "idle"
    analysisResult: str | None = None
    x: float = 0.0
    y: float = 0.0


class NarrationToggleRequest(BaseModel):
    index: int = Field(..., ge=0)


class NarrationResponse(BaseModel):
    activeIndex: int | None = None
    isPlaying: bool = False
    isLoading: bool = False
    progress: float = 0.0
    readBoundary: int = 0
    error: str | None = None


class NoteUpdateRequest(BaseModel):
    aiAnalysis: str | None = None
    userComment: str | None = None


class WorkshopResponse(BaseModel):
    exercise: GeneratedExercise
    vocabList: list[Vocabulary]
    clozeParagraphs: list[str]


class CoachRequest(BaseModel):
    query: str | None = None
    action: Literal["start", "review", "vocab"] | None = None
    draft: str | None = Field(None, description="Replaces the editor draft before the turn")


class CoachResponse(BaseModel):
    messages: list[ChatMessage]
    draft: str
