import asyncio

import pytest

from smartread.narration import SYNTHESIS_FAILED, ParagraphNarrator, read_boundary


def test_read_boundary_round_trip():
    paragraphs = ["a", "b"]
    assert read_boundary(paragraphs[0], 1.0) == len("a")
    assert read_boundary(paragraphs[0], 0.0) == 0


def test_read_boundary_is_proportional_and_clamped():
    text = "荷塘月色真美"
    assert read_boundary(text, 0.5) == 3
    assert read_boundary(text, 0.99) == 5
    assert read_boundary(text, 1.7) == 6
    assert read_boundary(text, -1) == 0


@pytest.mark.asyncio
async def test_toggle_plays_pauses_and_resumes(ai, engine, clock):
    narrator = ParagraphNarrator(ai, engine)

    assert await narrator.toggle(0, "荷塘月色真美") is True
    assert narrator.active_index == 0
    assert narrator.is_playing is True

    clock.advance(0.5)
    engine.narration.tick()
    assert narrator.boundary_for(0, "荷塘月色真美") == 3
    assert narrator.boundary_for(1, "别的段落") == 0

    await narrator.toggle(0, "荷塘月色真美")
    assert narrator.is_playing is False
    await narrator.toggle(0, "荷塘月色真美")
    assert narrator.is_playing is True
    assert clock.started[-1][1] == pytest.approx(0.5)
    assert ai.called("synthesize_speech") == 1


@pytest.mark.asyncio
async def test_switching_paragraph_resets_progress(ai, engine, clock):
    narrator = ParagraphNarrator(ai, engine)
    await narrator.toggle(0, "第一段")
    clock.advance(0.5)
    engine.narration.tick()

    await narrator.toggle(1, "第二段")
    assert narrator.active_index == 1
    assert narrator.progress == 0.0
    assert clock.started[-1][1] == 0.0


@pytest.mark.asyncio
async def test_synthesis_failure_leaves_nothing_active(ai, engine):
    ai.speech = None
    narrator = ParagraphNarrator(ai, engine)
    assert await narrator.toggle(0, "荷塘月色真美") is False
    assert narrator.active_index is None
    assert narrator.error == SYNTHESIS_FAILED
    assert narrator.is_loading is False


@pytest.mark.asyncio
async def test_decode_failure_is_reported(ai, engine):
    ai.speech = "!!not audio!!"
    narrator = ParagraphNarrator(ai, engine)
    assert await narrator.toggle(0, "荷塘月色真美") is False
    assert narrator.active_index is None
    assert engine.narration.buffer is None


@pytest.mark.asyncio
async def test_stale_synthesis_is_discarded(ai, engine):
    gate = asyncio.Event()
    real = ai.synthesize_speech

    async def slow(text):
        if text == "第一段":
            await gate.wait()
        return await real(text)

    ai.synthesize_speech = slow
    narrator = ParagraphNarrator(ai, engine)

    first = asyncio.create_task(narrator.toggle(0, "第一段"))
    await asyncio.sleep(0)
    assert await narrator.toggle(1, "第二段") is True
    gate.set()
    assert await first is False
    assert narrator.active_index == 1


@pytest.mark.asyncio
async def test_restart_only_for_active_paragraph(ai, engine, clock):
    narrator = ParagraphNarrator(ai, engine)
    await narrator.toggle(0, "荷塘月色真美")
    clock.advance(0.5)
    assert narrator.restart(1) is False
    assert narrator.restart(0) is True
    assert clock.started[-1][1] == 0.0

    narrator.stop()
    narrator.stop()
    assert narrator.active_index is None
