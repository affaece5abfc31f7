import asyncio

import pytest

from smartread.schemas import AnchorRect
from smartread.selection import (
    EDGE_MARGIN,
    FLIP_OFFSET,
    LOCAL_TTS_UNAVAILABLE,
    POPOVER_WIDTH,
    RIGHT_MARGIN,
    SelectionController,
    Viewport,
    place_popover,
)


class RecordingSpeech:
    def __init__(self, available=True):
        self.available = available
        self.spoken = []
        self.cancelled = 0

    def speak(self, text):
        if self.available:
            self.spoken.append(text)
        return self.available

    def cancel(self):
        self.cancelled += 1


def _controller(article, ai, engine, **kwargs):
    saved = {"vocab": [], "notes": []}
    ctl = SelectionController(
        article,
        ai,
        engine,
        on_add_vocab=saved["vocab"].append,
        on_add_note=saved["notes"].append,
        **kwargs,
    )
    return ctl, saved


def test_popover_stays_inside_viewport():
    vp = Viewport(width=1000, height=800)
    x, y = place_popover(AnchorRect(left=900, top=100, right=950, bottom=120), vp)
    assert x == 1000 - POPOVER_WIDTH - RIGHT_MARGIN
    assert y == 120 + EDGE_MARGIN

    x, _ = place_popover(AnchorRect(left=-50, top=100, right=0, bottom=120), vp)
    assert x == EDGE_MARGIN


def test_popover_flips_above_when_no_room_below():
    vp = Viewport(width=1000, height=800)
    _, y = place_popover(AnchorRect(left=10, top=700, right=50, bottom=720), vp)
    assert y == 700 - FLIP_OFFSET
    _, y = place_popover(AnchorRect(left=10, top=50, right=50, bottom=600), vp)
    assert y == EDGE_MARGIN


def test_empty_selection_is_ignored(article, ai, engine):
    ctl, _ = _controller(article, ai, engine)
    assert ctl.on_select("   ") is False
    assert ctl.state == "idle"


@pytest.mark.asyncio
async def test_stale_pinyin_does_not_overwrite_new_selection(article, ai, engine):
    ai.pinyin_gates = {"荷塘": asyncio.Event(), "月色": asyncio.Event()}
    ctl, _ = _controller(article, ai, engine)

    ctl.on_select("荷塘")
    first = asyncio.create_task(ctl.load_pinyin(ctl.generation, "荷塘"))
    ctl.on_select("月色")
    second = asyncio.create_task(ctl.load_pinyin(ctl.generation, "月色"))
    await asyncio.sleep(0)

    ai.pinyin_gates["月色"].set()
    await second
    assert ctl.pinyin == "pinyin:月色"

    ai.pinyin_gates["荷塘"].set()
    await first
    assert ctl.text == "月色"
    assert ctl.pinyin == "pinyin:月色"


@pytest.mark.asyncio
async def test_new_selection_stops_selection_audio(article, ai, engine):
    speech = RecordingSpeech(available=False)
    ctl, _ = _controller(article, ai, engine, local_speech=speech)
    ctl.on_select("曲曲折折的荷塘上面，弥望的是田田的叶子。")
    assert await ctl.read_selection() is True
    assert engine.selection.is_playing is True

    ctl.on_select("荷塘")
    assert engine.selection.is_playing is False
    assert ctl.analysis_status == "idle"
    assert speech.cancelled == 2


@pytest.mark.asyncio
async def test_analysis_failure_is_distinguishable_and_retryable(article, ai, engine):
    ai.analysis = None
    ctl, saved = _controller(article, ai, engine)
    ctl.on_select("荷塘")

    assert ctl.analysis_status == "idle"
    assert await ctl.request_analysis() is False
    assert ctl.analysis_status == "error"
    assert ctl.analysis_result is None
    assert ctl.save_note() is None

    ai.analysis = "写出了荷塘的静谧。"
    assert await ctl.request_analysis() is True
    assert ctl.state == "annotated"
    assert await ctl.request_analysis() is True
    assert ai.called("analyze_selection") == 2

    note = ctl.save_note()
    assert note.selectedText == "荷塘"
    assert note.aiAnalysis == "写出了荷塘的静谧。"
    assert saved["notes"] == [note]


@pytest.mark.asyncio
async def test_save_vocab_without_analysis(article, ai, engine):
    ctl, saved = _controller(article, ai, engine)
    ctl.on_select("荷塘")
    vocab = await ctl.save_vocab()
    assert vocab.word == "荷塘"
    assert vocab.definition == ""
    assert vocab.pinyin == "hé táng"
    assert saved["vocab"] == [vocab]


@pytest.mark.asyncio
async def test_lecture_is_cached_and_toggles(article, ai, engine):
    ctl, _ = _controller(article, ai, engine)
    ctl.on_select("荷塘")
    await ctl.request_analysis()

    assert await ctl.request_analysis_narration() is True
    assert engine.lecture.is_playing is True
    assert await ctl.request_analysis_narration() is True
    assert engine.lecture.is_playing is False
    assert await ctl.request_analysis_narration() is True
    assert engine.lecture.is_playing is True

    assert ai.called("teacher_script") == 1
    assert ai.called("synthesize_speech") == 1


@pytest.mark.asyncio
async def test_lecture_requires_analysis(article, ai, engine):
    ctl, _ = _controller(article, ai, engine)
    ctl.on_select("荷塘")
    assert await ctl.request_analysis_narration() is False
    assert ai.called("teacher_script") == 0


@pytest.mark.asyncio
async def test_read_selection_falls_back_to_local_speech(article, ai, engine):
    ai.speech = None
    speech = RecordingSpeech(available=True)
    ctl, _ = _controller(article, ai, engine, local_speech=speech)
    ctl.on_select("荷塘")
    assert await ctl.read_selection() is True
    assert speech.spoken == ["荷塘"]

    ctl.local_speech = RecordingSpeech(available=False)
    assert await ctl.read_selection() is False
    assert ctl.error == LOCAL_TTS_UNAVAILABLE


@pytest.mark.asyncio
async def test_close_is_idempotent_and_clears_state(article, ai, engine):
    ctl, _ = _controller(article, ai, engine)
    ctl.on_select("荷塘")
    await ctl.request_analysis()
    await ctl.request_analysis_narration()

    ctl.close()
    ctl.close()
    assert ctl.state == "idle"
    assert ctl.analysis_result is None
    assert engine.lecture.is_playing is False


def test_drag_blocks_reselection(article, ai, engine):
    ctl, _ = _controller(article, ai, engine)
    ctl.on_select("荷塘", AnchorRect(left=100, top=100, right=150, bottom=120))
    x, y = ctl.x, ctl.y

    ctl.start_drag(x + 5, y + 5)
    ctl.drag_to(x + 55, y + 25)
    assert ctl.on_select("月色") is False
    ctl.end_drag()

    assert (ctl.x, ctl.y) == (x + 50, y + 20)
    assert ctl.text == "荷塘"
    assert ctl.on_select("月色") is True
