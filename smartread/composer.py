from __future__ import annotations

import logging
import re

from smartread.ai_service import StudyAI
from smartread.schemas import Article

logger = logging.getLogger(__name__)

INDENT = "\u3000\u3000"

_LEADING_SPACE = re.compile(r"^[ \t\u3000]+", re.MULTILINE)
_CJK = r"[\u4e00-\u9fa5]"

EXAMPLE_TITLE = "荷塘月色（节选）"
EXAMPLE_CONTENT = (
    "　　这几天心里颇不宁静。今晚在院子里坐着乘凉，忽然想起日日走过的荷塘，在这满月的光里，总该另有一番样子吧。"
    "月亮渐渐地升高了，墙外马路上孩子们的欢笑，已经听不见了；妻在屋里拍着闰儿，朦胧地哼着眠歌。我悄悄地披上大衫，带上门出去。"
    "\n\n"
    "　　沿着荷塘，是一条曲折的小煤屑路。这是一条幽僻的路；白天也少人走，夜晚更加寂寞。荷塘四面，长着许多树，蓊蓊郁郁的。"
    "路灯是些没精打采的盏儿，经过这里，更是有些惨淡了。"
    "\n\n"
    "　　曲曲折折的荷塘上面，弥望的是田田的叶子。叶子出水很高，像亭亭的舞女的裙。层层的叶子中间，零星地点缀着些白花，"
    "有袅娜地开着的，有羞涩地打着朵儿的；正如一粒粒的明珠，又如碧天里的星星，又如刚出浴的美人。"
)


def auto_format(raw: str) -> str:
    """
    Local formatter: one paragraph per non-empty line, full-width punctuation
    next to Chinese characters, two ideographic spaces of indentation and a
    blank line between paragraphs.
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _LEADING_SPACE.sub("", text)
    text = re.sub(f"({_CJK}),", r"\1，", text)
    text = re.sub(f",({_CJK})", r"，\1", text)
    text = re.sub(f"({_CJK})\\.", r"\1。", text)
    text = re.sub(f"({_CJK})\\?", r"\1？", text)
    paragraphs = [p.strip() for p in text.split("\n")]
    return "\n\n".join(f"{INDENT}{p}" for p in paragraphs if p)


class Composer:
    def __init__(self, ai: StudyAI, initial: Article | None = None) -> None:
        self.ai = ai
        self.title = initial.title if initial else ""
        self.content = initial.content if initial else ""
        self.is_formatting = False
        self.has_formatted = False

    def edit(self, *, title: str | None = None, content: str | None = None) -> None:
        if title is not None:
            self.title = title
        if content is not None:
            self.content = content
        self.has_formatted = False

    def load_example(self) -> None:
        self.title = EXAMPLE_TITLE
        self.content = EXAMPLE_CONTENT
        self.has_formatted = True

    async def smart_format(self) -> str:
        if not self.content.strip():
            return self.content
        self.is_formatting = True
        try:
            proofread = await self.ai.proofread(self.content)
            # Local pass guarantees indentation even when the model ignores it.
            self.content = auto_format(proofread)
            self.has_formatted = True
        finally:
            self.is_formatting = False
        return self.content

    def build_article(self) -> Article:
        if not self.title.strip() or not self.content.strip():
            raise ValueError("Title and content are required")
        article = Article.from_text(self.title, self.content)
        logger.info("Composed article %r with %d paragraphs", article.title, len(article.paragraphs))
        return article
