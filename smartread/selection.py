from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

from smartread.ai_service import StudyAI
from smartread.audio import AudioBuffer, AudioEngine
from smartread.exceptions import AudioDecodeError
from smartread.schemas import AnchorRect, Article, Note, Vocabulary

logger = logging.getLogger(__name__)

POPOVER_WIDTH = 480
POPOVER_HEIGHT_ESTIMATE = 300
EDGE_MARGIN = 10
RIGHT_MARGIN = 20
FLIP_OFFSET = 400

READ_FAILED = "朗读失败，请稍后重试。"
LOCAL_TTS_UNAVAILABLE = "朗读失败：当前环境不支持语音合成。"
LECTURE_FAILED = "讲解音频生成失败，请稍后重试。"

AnalysisStatus = Literal["idle", "loading", "ready", "error"]


class LocalSpeech(Protocol):
    def speak(self, text: str) -> bool: ...

    def cancel(self) -> None: ...


class NullLocalSpeech:
    """No on-device speech engine available."""

    def speak(self, text: str) -> bool:
        return False

    def cancel(self) -> None:
        return None


@dataclass(frozen=True)
class Viewport:
    width: float = 1280
    height: float = 800


def place_popover(rect: AnchorRect, viewport: Viewport) -> tuple[float, float]:
    """
    Keep the popover inside the viewport near the anchor; flip above the
    selection when there is not enough room below.
    """
    x = max(EDGE_MARGIN, min(rect.left, viewport.width - POPOVER_WIDTH - RIGHT_MARGIN))
    y = rect.bottom + EDGE_MARGIN
    if y + POPOVER_HEIGHT_ESTIMATE > viewport.height:
        y = max(EDGE_MARGIN, rect.top - FLIP_OFFSET)
    return x, y


class SelectionController:
    """
    Reading-phase selection popover: pinyin lookup, literary analysis, read-aloud
    (selection slot), analysis lecture (lecture slot) and save actions.

    Every async result is tagged with the selection generation it was issued
    for and dropped if the user has selected something else since.
    """

    def __init__(
        self,
        article: Article,
        ai: StudyAI,
        engine: AudioEngine,
        *,
        on_add_vocab: Callable[[Vocabulary], None],
        on_add_note: Callable[[Note], None],
        local_speech: LocalSpeech | None = None,
        viewport: Viewport | None = None,
    ) -> None:
        self.article = article
        self.ai = ai
        self.engine = engine
        self.on_add_vocab = on_add_vocab
        self.on_add_note = on_add_note
        self.local_speech = local_speech or NullLocalSpeech()
        self.viewport = viewport or Viewport()

        self.generation = 0
        self.text: str | None = None
        self.rect: AnchorRect | None = None
        self.pinyin: str | None = None
        self.pinyin_loading = False
        self.analysis_status: AnalysisStatus = "idle"
        self.analysis_result: str | None = None
        self.is_loading_selection_audio = False
        self.is_loading_lecture = False
        self.error: str | None = None
        self.x = 0.0
        self.y = 0.0
        self.dragging = False
        self._drag_offset = (0.0, 0.0)
        self._lecture_buffer: AudioBuffer | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> Literal["idle", "selected", "annotated"]:
        if self.text is None:
            return "idle"
        return "annotated" if self.analysis_result is not None else "selected"

    def _stop_audio(self) -> None:
        self.engine.selection.stop()
        self.engine.lecture.stop()
        self.local_speech.cancel()

    def on_select(self, text: str, rect: AnchorRect | None = None) -> bool:
        text = (text or "").strip()
        if not text or self.dragging:
            return False
        self.generation += 1
        self._stop_audio()

        self.text = text
        self.rect = rect or AnchorRect()
        self.pinyin = None
        self.analysis_status = "idle"
        self.analysis_result = None
        self.error = None
        self._lecture_buffer = None
        self.x, self.y = place_popover(self.rect, self.viewport)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return True
        task = loop.create_task(self.load_pinyin(self.generation, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def load_pinyin(self, generation: int, text: str) -> None:
        self.pinyin_loading = True
        try:
            result = await self.ai.pinyin(text)
        except Exception:
            logger.warning("Pinyin lookup failed for %r", text, exc_info=True)
            result = None
        if generation != self.generation:
            logger.debug("Discarding pinyin for superseded selection %r", text)
            return
        self.pinyin_loading = False
        if result:
            self.pinyin = result

    async def request_analysis(self) -> bool:
        if self.text is None or self.analysis_status in ("loading", "ready"):
            return self.analysis_status == "ready"
        generation = self.generation
        text = self.text
        self.engine.lecture.stop()
        self._lecture_buffer = None
        self.analysis_status = "loading"

        result = await self.ai.analyze_selection(text, self.article.content)
        if generation != self.generation:
            return False
        if not result:
            self.analysis_status = "error"
            self.error = "解析服务暂时不可用，请重试。"
            return False
        self.analysis_result = result
        self.analysis_status = "ready"
        self.error = None
        return True

    async def read_selection(self) -> bool:
        if self.text is None:
            return False
        slot = self.engine.selection
        if slot.is_playing:
            slot.stop()
            return True
        slot.stop()

        generation = self.generation
        text = self.text
        self.is_loading_selection_audio = True
        try:
            payload = await self.ai.synthesize_speech(text)
            if generation != self.generation:
                return False
            if not payload:
                if self.local_speech.speak(text):
                    return True
                self.error = LOCAL_TTS_UNAVAILABLE
                return False
            try:
                slot.play_payload(payload, sample_rate=self.engine.sample_rate)
            except AudioDecodeError as e:
                logger.warning("Read selection decode error: %s", e)
                self.error = READ_FAILED
                return False
            return True
        finally:
            if generation == self.generation:
                self.is_loading_selection_audio = False

    async def request_analysis_narration(self) -> bool:
        if self.analysis_result is None or self.text is None:
            return False
        slot = self.engine.lecture
        if slot.is_playing:
            slot.stop()
            return True

        if self._lecture_buffer is not None:
            slot.play(self._lecture_buffer, 0.0)
            return True

        generation = self.generation
        analysis, text = self.analysis_result, self.text
        self.is_loading_lecture = True
        try:
            script = await self.ai.teacher_script(analysis, text)
            payload = await self.ai.synthesize_speech(script)
            if generation != self.generation:
                return False
            if not payload:
                self.error = LECTURE_FAILED
                return False
            try:
                buffer = self.engine.decode(payload)
            except AudioDecodeError as e:
                logger.warning("Lecture decode error: %s", e)
                self.error = LECTURE_FAILED
                return False
            self._lecture_buffer = buffer
            slot.play(buffer, 0.0)
            return True
        finally:
            if generation == self.generation:
                self.is_loading_lecture = False

    async def save_vocab(self) -> Vocabulary | None:
        if self.text is None:
            return None
        text = self.text
        pinyin = self.pinyin
        if pinyin is None:
            pinyin = await self.ai.pinyin(text)
        vocab = Vocabulary(word=text, pinyin=pinyin, definition="", context=text)
        self.on_add_vocab(vocab)
        logger.info("Saved vocabulary %r", text)
        return vocab

    def save_note(self) -> Note | None:
        if self.text is None or self.analysis_result is None:
            return None
        note = Note(selectedText=self.text, aiAnalysis=self.analysis_result)
        self.on_add_note(note)
        logger.info("Saved note for %r", self.text)
        return note

    def close(self) -> None:
        self.generation += 1
        self._stop_audio()
        self.text = None
        self.rect = None
        self.pinyin = None
        self.pinyin_loading = False
        self.analysis_status = "idle"
        self.analysis_result = None
        self.is_loading_selection_audio = False
        self.is_loading_lecture = False
        self.error = None
        self._lecture_buffer = None
        self.dragging = False

    # Drag only moves the popover; on_select is ignored while a drag is active.

    def start_drag(self, pointer_x: float, pointer_y: float) -> None:
        if self.text is None:
            return
        self.dragging = True
        self._drag_offset = (pointer_x - self.x, pointer_y - self.y)

    def drag_to(self, pointer_x: float, pointer_y: float) -> None:
        if not self.dragging:
            return
        self.x = pointer_x - self._drag_offset[0]
        self.y = pointer_y - self._drag_offset[1]

    def end_drag(self) -> None:
        self.dragging = False
