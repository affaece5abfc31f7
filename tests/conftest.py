from __future__ import annotations

import asyncio
import base64
from typing import Any

import pytest

from smartread.audio import AudioEngine
from smartread.schemas import (
    Article,
    GeneratedExercise,
    QuizQuestion,
    VideoScript,
    Vocabulary,
    WritingGuidance,
)


def pcm_payload(seconds: float = 1.0, sample_rate: int = 24000) -> str:
    return base64.b64encode(b"\x00\x00" * int(seconds * sample_rate)).decode("ascii")


class FakeClock:
    """Audio backend with a hand-driven clock; progress is advanced through slot.tick()."""

    def __init__(self) -> None:
        self.t = 0.0
        self.started: list[tuple[int, float]] = []
        self.stopped: list[int] = []
        self._handle = 0

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    def start(self, buffer, offset: float) -> int:
        self._handle += 1
        self.started.append((self._handle, offset))
        return self._handle

    def stop(self, handle) -> None:
        self.stopped.append(handle)

    async def next_frame(self) -> None:
        await asyncio.sleep(3600)


class FakeStudyAI:
    """Stand-in for StudyAI with canned results; every call is recorded."""

    def __init__(self) -> None:
        self.available = True
        self.calls: list[tuple[str, tuple]] = []
        self.analysis: str | None = "这是一段赏析。"
        self.pinyin_result: str | None = "hé táng"
        self.pinyin_gates: dict[str, asyncio.Event] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.speech: str | None = pcm_payload(1.0)
        self.vocab: list[Vocabulary] = []
        self.quiz: list[QuizQuestion] = []
        self.script: VideoScript | None = make_script()
        self.exercise = GeneratedExercise(writingPrompt="写一写月夜", writingTips=["抓住景物特点"])
        self.enriched: dict[str, dict[str, Any]] = {}
        self.guidance = WritingGuidance(reply="先想一想你最难忘的夜晚。")
        self.cover: str | None = None

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def called(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    async def _wait_gate(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    async def analyze_selection(self, text, context, grade="middle"):
        self._record("analyze_selection", text)
        return self.analysis

    async def teacher_script(self, analysis, original):
        self._record("teacher_script", analysis, original)
        return f"同学们，{analysis}"

    async def outline_explanation(self, title, content, article_title):
        self._record("outline_explanation", title)
        return f"{title}：{content}"

    async def proofread(self, text):
        self._record("proofread", text)
        return text

    async def pinyin(self, text):
        self._record("pinyin", text)
        gate = self.pinyin_gates.get(text)
        if gate is not None:
            await gate.wait()
        return self.pinyin_result if text not in self.pinyin_gates else f"pinyin:{text}"

    async def extract_vocabulary(self, text):
        self._record("extract_vocabulary", text)
        return list(self.vocab)

    async def generate_quiz(self, vocab):
        self._record("generate_quiz", len(vocab))
        return list(self.quiz)

    async def video_script(self, content):
        self._record("video_script", content)
        await self._wait_gate("video_script")
        return self.script

    async def synthesize_speech(self, text):
        self._record("synthesize_speech", text)
        return self.speech

    async def workshop_content(self, content, vocab, notes):
        self._record("workshop_content", content)
        return self.exercise

    async def enrich_vocabulary(self, vocab):
        self._record("enrich_vocabulary", len(vocab))
        await self._wait_gate("enrich_vocabulary")
        return [v.enriched_with(self.enriched[v.word]) if v.word in self.enriched else v for v in vocab]

    async def writing_guidance(self, prompt, draft, query, history, article):
        self._record("writing_guidance", query, len(history))
        return self.guidance

    async def cover_image(self, title, content):
        self._record("cover_image", title)
        return self.cover


def make_script() -> VideoScript:
    return VideoScript(
        intro="开头讲月色。",
        framework="由心绪到景物。",
        highlights="通感的运用。",
        emotion="不宁静到淡淡的喜悦。",
        theme="对自由的向往。",
        transfer="写景要融情。",
    )


def make_article() -> Article:
    return Article.from_text("荷塘月色", "荷塘月色真美。\n\n曲曲折折的荷塘上面，弥望的是田田的叶子。")


@pytest.fixture
def ai() -> FakeStudyAI:
    return FakeStudyAI()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> AudioEngine:
    eng = AudioEngine(clock)
    yield eng
    eng.stop_all()


@pytest.fixture
def article() -> Article:
    return make_article()
