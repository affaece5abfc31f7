import asyncio

import pytest

from smartread.outline import SCRIPT_FAILED, OutlinePhase
from smartread.schemas import Article, Phase
from smartread.session import LearningSession

from conftest import make_article, make_script


def _session() -> LearningSession:
    s = LearningSession()
    s.complete(make_article())
    return s


def test_outline_requires_article(ai, engine):
    with pytest.raises(ValueError):
        OutlinePhase(LearningSession(), ai, engine)


@pytest.mark.asyncio
async def test_generate_caches_on_session(ai, engine):
    session = _session()
    phase = OutlinePhase(session, ai, engine)
    assert await phase.generate() == "ready"
    assert session.outline == ai.script

    session.start_reading()
    session.back_to_outline()
    again = OutlinePhase(session, ai, engine)
    assert again.status == "ready"
    await again.generate()
    assert ai.called("video_script") == 1


@pytest.mark.asyncio
async def test_generate_failure_is_retryable(ai, engine):
    ai.script = None
    session = _session()
    phase = OutlinePhase(session, ai, engine)
    assert await phase.generate() == "error"
    assert phase.error_message == SCRIPT_FAILED
    assert session.outline is None

    ai.script = make_script()
    assert await phase.generate() == "ready"


@pytest.mark.asyncio
async def test_play_section_toggles(ai, engine):
    phase = OutlinePhase(_session(), ai, engine)
    await phase.generate()

    assert await phase.play_section("theme") is True
    assert phase.playing_key == "theme"
    assert await phase.play_section("theme") is True
    assert phase.playing_key is None
    assert engine.narration.is_playing is False

    assert await phase.play_section("unknown") is False


@pytest.mark.asyncio
async def test_cover_image_is_optional(ai, engine):
    phase = OutlinePhase(_session(), ai, engine)
    assert await phase.load_cover() is None
    ai.cover = "data:image/png;base64,AAAA"
    assert await phase.load_cover() == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_outline_for_previous_article_is_not_cached(ai, engine):
    session = _session()
    phase = OutlinePhase(session, ai, engine)
    gate = ai.gates["video_script"] = asyncio.Event()
    pending = asyncio.create_task(phase.generate())
    await asyncio.sleep(0)

    session.reset()
    session.complete(Article.from_text("背影", "我与父亲不相见已二年余了。"))
    gate.set()
    await pending

    assert session.outline is None
    assert session.cached_outline() is None
    assert OutlinePhase(session, ai, engine).status == "idle"


@pytest.mark.asyncio
async def test_outline_arriving_after_phase_exit_is_dropped(ai, engine):
    session = _session()
    phase = OutlinePhase(session, ai, engine)
    gate = ai.gates["video_script"] = asyncio.Event()
    pending = asyncio.create_task(phase.generate())
    await asyncio.sleep(0)

    session.start_reading()
    gate.set()
    await pending

    assert session.phase is Phase.reading
    assert session.outline is None


@pytest.mark.asyncio
async def test_stop_supersedes_generation(ai, engine):
    session = _session()
    phase = OutlinePhase(session, ai, engine)
    gate = ai.gates["video_script"] = asyncio.Event()
    pending = asyncio.create_task(phase.generate())
    await asyncio.sleep(0)

    phase.stop()
    gate.set()
    await pending

    assert phase.script is None
    assert session.outline is None
