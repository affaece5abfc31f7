from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Literal, Protocol

from pydantic import ValidationError

from smartread import prompts
from smartread.schemas import (
    ChatMessage,
    DraftVideoScript,
    EnrichedVocabulary,
    ExtractedVocabulary,
    GeneratedExercise,
    GeneratedQuiz,
    Note,
    QuizQuestion,
    VideoScript,
    Vocabulary,
    WritingGuidance,
    new_id,
)

logger = logging.getLogger(__name__)

ANALYSIS_CONTEXT_CHARS = 1000
VOCAB_SOURCE_CHARS = 1500
OUTLINE_SOURCE_CHARS = 2000
WORKSHOP_SOURCE_CHARS = 2000
COACH_ARTICLE_CHARS = 500
COVER_HINT_CHARS = 300

# Shorter texts go through the local speech path.
MIN_SYNTH_CHARS = 12

OUTLINE_PLACEHOLDER = "内容生成中，请稍后再试。"
COACH_FALLBACK_REPLY = "连接似乎不太稳定，请稍后再试。"

_ZERO_WIDTH = re.compile(r"[\u200B-\u200D\uFEFF]")
_WHITESPACE = re.compile(r"\s+")


class GenerationClient(Protocol):
    async def generate_text(self, prompt: str, *, system: str | None = None, model: str | None = None) -> str | None: ...

    async def generate_json(
        self, prompt: str, *, schema: Any, system: str | None = None, model: str | None = None
    ) -> dict[str, Any] | None: ...

    async def synthesize_speech(self, text: str) -> str | None: ...

    async def generate_image(self, prompt: str, *, aspect_ratio: str = "16:9") -> str | None: ...


def normalize_speech_text(text: str) -> str:
    return _WHITESPACE.sub(" ", _ZERO_WIDTH.sub("", text or "")).strip()


class StudyAI:
    """
    Capability layer used by the session controllers. Each method builds the
    prompt, validates the response into typed entities and returns a fallback
    value on any failure. With `client=None` every call returns its fallback.
    """

    def __init__(self, client: GenerationClient | None, *, pro_model: str | None = None) -> None:
        self.client = client
        self.pro_model = pro_model

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _text(self, prompt: str, **kwargs: Any) -> str | None:
        if self.client is None:
            return None
        try:
            return await self.client.generate_text(prompt, **kwargs)
        except Exception:
            logger.exception("generate_text failed")
            return None

    async def _json(self, prompt: str, schema: Any, **kwargs: Any) -> dict[str, Any] | None:
        if self.client is None:
            return None
        try:
            return await self.client.generate_json(prompt, schema=schema, **kwargs)
        except Exception:
            logger.exception("generate_json failed")
            return None

    async def analyze_selection(
        self, text: str, context: str, grade: Literal["primary", "middle"] = "middle"
    ) -> str | None:
        prompt = prompts.ANALYZE_SELECTION.format(
            text=text, context=context[:ANALYSIS_CONTEXT_CHARS], grade=grade
        )
        return await self._text(prompt)

    async def teacher_script(self, analysis: str, original: str) -> str:
        script = await self._text(prompts.TEACHER_SCRIPT.format(analysis=analysis, original=original))
        return script or analysis

    async def outline_explanation(self, title: str, content: str, article_title: str) -> str:
        lecture = await self._text(
            prompts.OUTLINE_EXPLANATION.format(title=title, content=content, article_title=article_title)
        )
        return lecture or content

    async def proofread(self, text: str) -> str:
        return await self._text(prompts.PROOFREAD.format(text=text)) or text

    async def pinyin(self, text: str) -> str | None:
        return await self._text(prompts.PINYIN.format(text=text))

    async def extract_vocabulary(self, text: str) -> list[Vocabulary]:
        data = await self._json(
            prompts.EXTRACT_VOCABULARY.format(text=text[:VOCAB_SOURCE_CHARS]), ExtractedVocabulary
        )
        if data is None:
            return []
        try:
            extracted = ExtractedVocabulary.model_validate(data)
        except ValidationError as e:
            logger.warning("Vocabulary extraction returned an invalid shape: %s", e)
            return []

        result: list[Vocabulary] = []
        for item in extracted.words:
            try:
                result.append(
                    Vocabulary(
                        id=new_id("auto-vocab"),
                        word=item.word,
                        pinyin=item.pinyin,
                        definition=item.definition,
                        partOfSpeech=item.partOfSpeech,
                        difficulty=item.difficulty,
                        exampleSentence=item.exampleSentence,
                        contextHint=item.contextHint,
                        context=item.context or item.word,
                    )
                )
            except ValidationError:
                logger.debug("Skipping unusable vocabulary item %r", item.word)
        return result

    async def generate_quiz(self, vocab: list[Vocabulary]) -> list[QuizQuestion]:
        if not vocab:
            return []
        words = ", ".join(v.word for v in vocab)
        data = await self._json(prompts.VOCAB_QUIZ.format(words=words), GeneratedQuiz)
        if data is None:
            return []
        raw = data.get("questions") or []
        questions: list[QuizQuestion] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                q = QuizQuestion.model_validate(item)
            except ValidationError:
                logger.debug("Skipping invalid quiz question %r", item)
                continue
            if q.type == "choice" and not q.options:
                continue
            questions.append(q)
        return questions

    async def video_script(self, content: str) -> VideoScript | None:
        data = await self._json(prompts.VIDEO_SCRIPT.format(content=content[:OUTLINE_SOURCE_CHARS]), VideoScript)
        if data is None:
            return None
        try:
            draft = DraftVideoScript.model_validate(data)
        except ValidationError as e:
            logger.warning("Outline returned an invalid shape: %s", e)
            return None
        values = draft.model_dump()
        if not any(values.values()):
            return None
        return VideoScript(**{k: (v or OUTLINE_PLACEHOLDER) for k, v in values.items()})

    async def synthesize_speech(self, text: str) -> str | None:
        if self.client is None:
            return None
        safe = normalize_speech_text(text)
        if len(safe) <= MIN_SYNTH_CHARS:
            return None
        try:
            return await self.client.synthesize_speech(safe)
        except Exception:
            logger.exception("synthesize_speech failed")
            return None

    async def workshop_content(
        self, content: str, vocab: Iterable[Vocabulary], notes: Iterable[Note]
    ) -> GeneratedExercise:
        prompt = prompts.WORKSHOP.format(
            content=content[:WORKSHOP_SOURCE_CHARS],
            words=", ".join(v.word for v in vocab),
            notes=", ".join(n.selectedText for n in notes),
        )
        data = await self._json(prompt, GeneratedExercise)
        if data is None:
            return GeneratedExercise()
        try:
            return GeneratedExercise.model_validate(data)
        except ValidationError as e:
            logger.warning("Workshop content returned an invalid shape: %s", e)
            return GeneratedExercise()

    async def enrich_vocabulary(self, vocab: list[Vocabulary]) -> list[Vocabulary]:
        if not vocab:
            return vocab
        words = ", ".join(v.word for v in vocab)
        data = await self._json(prompts.ENRICH_VOCABULARY.format(words=words), EnrichedVocabulary)
        if data is None:
            return vocab
        try:
            enriched = EnrichedVocabulary.model_validate(data).enriched
        except ValidationError as e:
            logger.warning("Enrichment returned an invalid shape: %s", e)
            return vocab
        by_word = {e.word: e.model_dump(exclude_none=True) for e in enriched}
        return [v.enriched_with(by_word[v.word]) if v.word in by_word else v for v in vocab]

    async def writing_guidance(
        self, prompt: str, draft: str, query: str, history: list[ChatMessage], article: str
    ) -> WritingGuidance:
        system = prompts.WRITING_COACH_SYSTEM.format(
            prompt=prompt, article=article[:COACH_ARTICLE_CHARS], draft=draft
        )
        history_json = json.dumps([m.model_dump() for m in history], ensure_ascii=False)
        data = await self._json(
            prompts.WRITING_COACH_TURN.format(history=history_json, query=query),
            WritingGuidance,
            system=system,
            model=self.pro_model,
        )
        if data is None:
            return WritingGuidance(reply=COACH_FALLBACK_REPLY)
        try:
            return WritingGuidance.model_validate(data)
        except ValidationError:
            return WritingGuidance(reply=COACH_FALLBACK_REPLY)

    async def cover_image(self, title: str, content: str) -> str | None:
        if self.client is None:
            return None
        try:
            return await self.client.generate_image(
                prompts.COVER_IMAGE.format(title=title, hint=content[:COVER_HINT_CHARS])
            )
        except Exception:
            logger.exception("cover image generation failed")
            return None
