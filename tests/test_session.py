import pytest

from smartread.exceptions import InvalidTransitionError
from smartread.schemas import Note, Phase, Vocabulary
from smartread.session import LearningSession
from smartread.usage import NoopUsageRecorder

from conftest import make_article, make_script


def _reading_session(usage=None) -> LearningSession:
    s = LearningSession(usage=usage)
    s.complete(make_article())
    s.start_reading()
    return s


def test_happy_path_through_all_phases():
    s = LearningSession()
    seen = []
    s.add_listener(lambda old, new: seen.append((old, new)))

    s.complete(make_article())
    assert s.phase is Phase.outline
    s.start_vocab()
    s.complete_vocab([Vocabulary(word="荷塘")])
    assert s.phase is Phase.reading
    assert [v.word for v in s.vocab_list] == ["荷塘"]
    s.finish_reading()

    assert s.phase is Phase.workshop
    assert s.sidebar_open is False
    assert seen == [
        (Phase.compose, Phase.outline),
        (Phase.outline, Phase.vocab_learning),
        (Phase.vocab_learning, Phase.reading),
        (Phase.reading, Phase.workshop),
    ]


def test_invalid_transition_raises_and_keeps_data():
    s = _reading_session()
    s.add_vocab(Vocabulary(word="荷塘"))

    with pytest.raises(InvalidTransitionError) as exc:
        s.complete(make_article())
    assert exc.value.current == "READING"
    assert exc.value.operation == "complete"
    assert s.phase is Phase.reading
    assert len(s.vocab_list) == 1

    with pytest.raises(InvalidTransitionError):
        s.complete_vocab([Vocabulary(word="月色")])
    assert len(s.vocab_list) == 1


def test_add_vocab_only_while_reading():
    s = LearningSession()
    with pytest.raises(InvalidTransitionError):
        s.add_vocab(Vocabulary(word="荷塘"))
    with pytest.raises(InvalidTransitionError):
        s.add_note(Note(selectedText="荷塘", aiAnalysis="x"))
    assert s.vocab_list == ()


def test_lists_grow_monotonically_until_reset():
    s = _reading_session()
    lengths = []
    for word in ["荷塘", "月色", "田田"]:
        s.add_vocab(Vocabulary(word=word))
        lengths.append(len(s.vocab_list))
    assert lengths == sorted(lengths)
    assert isinstance(s.vocab_list, tuple)


def test_reset_clears_aggregates():
    s = _reading_session()
    s.add_vocab(Vocabulary(word="荷塘"))
    s.add_vocab(Vocabulary(word="月色"))
    s.add_note(Note(selectedText="荷塘", aiAnalysis="赏析"))

    s.reset()

    assert s.phase is Phase.compose
    assert s.vocab_list == ()
    assert s.note_list == ()
    assert s.article is None
    assert s.outline is None


def test_reset_from_compose_does_not_notify():
    s = LearningSession()
    seen = []
    s.add_listener(lambda old, new: seen.append(new))
    s.reset()
    assert seen == []
    assert s.phase is Phase.compose


def test_usage_recorded_once_per_entry_into_reading():
    usage = NoopUsageRecorder()
    s = _reading_session(usage)
    assert usage.calls == 1
    s.back_to_outline()
    s.start_reading()
    assert usage.calls == 2


def test_back_navigation_keeps_data():
    s = _reading_session()
    s.add_note(Note(selectedText="荷塘", aiAnalysis="赏析"))
    s.back_to_outline()
    assert s.phase is Phase.outline
    assert len(s.note_list) == 1


def test_outline_cache_follows_article():
    s = LearningSession()
    s.complete(make_article())
    s.set_outline(make_script(), make_article().model_copy(update={"title": "背影"}))
    assert s.cached_outline() is None

    s.set_outline(make_script(), s.article)
    assert s.cached_outline() is not None

    s.back_to_compose()
    s.complete(make_article().model_copy(update={"title": "背影"}))
    assert s.cached_outline() is None


def test_update_and_remove_note():
    s = _reading_session()
    note = Note(selectedText="荷塘", aiAnalysis="赏析")
    s.add_note(note)

    updated = s.update_note(note.id, user_comment="很美")
    assert updated.userComment == "很美"
    assert s.note_list[0].aiAnalysis == "赏析"

    with pytest.raises(KeyError):
        s.update_note("missing", user_comment="x")

    assert s.remove_note(note.id) is True
    assert s.remove_note(note.id) is False
    assert s.note_list == ()


def test_enrich_vocab_fills_only_missing_fields():
    s = _reading_session()
    s.add_vocab(Vocabulary(word="荷塘", definition="种荷花的池塘"))
    original_id = s.vocab_list[0].id

    s.enrich_vocab([Vocabulary(word="荷塘", definition="别的释义", exampleSentence="荷塘边很安静。")])

    v = s.vocab_list[0]
    assert v.id == original_id
    assert v.definition == "种荷花的池塘"
    assert v.exampleSentence == "荷塘边很安静。"
    assert len(s.vocab_list) == 1


def test_snapshot_is_detached_copy():
    s = _reading_session()
    s.add_vocab(Vocabulary(word="荷塘"))
    snap = s.snapshot()
    snap.vocabList.clear()
    assert len(s.vocab_list) == 1
    assert snap.phase is Phase.reading
    assert snap.sidebarOpen is True
