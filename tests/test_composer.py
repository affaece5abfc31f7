import pytest

from smartread.composer import EXAMPLE_TITLE, INDENT, Composer, auto_format


def test_auto_format_indents_and_fixes_punctuation():
    raw = "荷塘,月色.\r\n   第二段?\n\n\n"
    assert auto_format(raw) == f"{INDENT}荷塘，月色。\n\n{INDENT}第二段？"


def test_auto_format_leaves_ascii_punctuation_alone():
    assert auto_format("version 1.0, ok?") == f"{INDENT}version 1.0, ok?"


@pytest.mark.asyncio
async def test_smart_format_proofreads_then_formats(ai):
    composer = Composer(ai)
    composer.edit(title="荷塘月色", content="荷塘,月色")
    content = await composer.smart_format()
    assert content == f"{INDENT}荷塘，月色"
    assert composer.has_formatted is True
    assert ai.called("proofread") == 1


@pytest.mark.asyncio
async def test_smart_format_skips_empty_content(ai):
    composer = Composer(ai)
    assert await composer.smart_format() == ""
    assert ai.called("proofread") == 0


def test_build_article_requires_title_and_content(ai):
    composer = Composer(ai)
    composer.edit(content="正文")
    with pytest.raises(ValueError):
        composer.build_article()


def test_load_example_builds_paragraphs(ai):
    composer = Composer(ai)
    composer.load_example()
    article = composer.build_article()
    assert article.title == EXAMPLE_TITLE
    assert len(article.paragraphs) == 3
    assert all(not p.startswith(INDENT) for p in article.paragraphs)
