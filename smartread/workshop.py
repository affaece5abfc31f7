from __future__ import annotations

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Callable, Iterable
from urllib.parse import quote

from docx import Document

from smartread.ai_service import StudyAI
from smartread.schemas import Article, GeneratedExercise, Note, SessionSnapshot, VideoScript, Vocabulary

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 50


@dataclass(frozen=True)
class ClozeSegment:
    text: str
    answer: str | None = None

    @property
    def is_blank(self) -> bool:
        return self.answer is not None


def build_cloze(paragraphs: Iterable[str], vocab: Iterable[Vocabulary]) -> list[list[ClozeSegment]]:
    """
    Replace every occurrence of a known word with a blank bound to that word,
    paragraph by paragraph. Where words overlap the longest one wins.
    """
    words = sorted({v.word for v in vocab if v.word}, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(w) for w in words)) if words else None

    result: list[list[ClozeSegment]] = []
    for paragraph in paragraphs:
        if pattern is None:
            result.append([ClozeSegment(paragraph)] if paragraph else [])
            continue
        segments: list[ClozeSegment] = []
        pos = 0
        for m in pattern.finditer(paragraph):
            if m.start() > pos:
                segments.append(ClozeSegment(paragraph[pos : m.start()]))
            segments.append(ClozeSegment(m.group(0), answer=m.group(0)))
            pos = m.end()
        if pos < len(paragraph):
            segments.append(ClozeSegment(paragraph[pos:]))
        result.append(segments)
    return result


def render_cloze_html(segments: list[ClozeSegment]) -> str:
    parts = []
    for seg in segments:
        if seg.is_blank:
            parts.append(f'<input type="text" data-answer="{html.escape(seg.answer or "")}" class="cloze-blank" />')
        else:
            parts.append(html.escape(seg.text))
    return "".join(parts)


def cloze_answers(segments: list[ClozeSegment]) -> list[str]:
    return [seg.answer for seg in segments if seg.answer is not None]


def placeholder_image(word: str) -> str:
    bg = "#e0f2f1"
    fg = "#0f766e"
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300" viewBox="0 0 400 300">'
        f'<rect width="400" height="300" rx="24" fill="{bg}"/>'
        f"<text x=\"200\" y=\"160\" font-size=\"64\" font-family=\"'KaiTi','STKaiti',serif\" font-weight=\"700\" "
        f'fill="{fg}" text-anchor="middle" dominant-baseline="middle">{html.escape(word[:4])}</text>'
        "</svg>"
    )
    return f"data:image/svg+xml;utf8,{quote(svg)}"


def with_placeholders(vocab: Iterable[Vocabulary]) -> list[Vocabulary]:
    return [v if v.imageUrl else v.model_copy(update={"imageUrl": placeholder_image(v.word)}) for v in vocab]


def notes_export(article: Article, notes: Iterable[Note], *, now: datetime | None = None) -> str:
    now = now or datetime.now()
    lines = [f"《{article.title}》阅读笔记", f"生成时间：{now.date().isoformat()}", ""]
    for idx, note in enumerate(notes, start=1):
        lines.append(f"【笔记 {idx}】")
        lines.append(f"原文片段：{note.selectedText}")
        lines.append(f"AI 解析：{note.aiAnalysis}")
        if note.userComment:
            lines.append(f"我的心得：{note.userComment}")
        lines.append(SEPARATOR)
        lines.append("")
    return "\n".join(lines)


def outline_export(article: Article, outline: VideoScript) -> str:
    lines = [f"《{article.title}》导读大纲", ""]
    for idx, (_, title, text) in enumerate(outline.sections(), start=1):
        lines.append(f"{idx}. {title}")
        lines.append(text)
        lines.append("")
    return "\n".join(lines)


def report_text(snapshot: SessionSnapshot, *, now: datetime | None = None) -> str:
    """Plain-text learning report used for share/email."""
    now = now or datetime.now()
    title = snapshot.article.title if snapshot.article else ""
    lines = [
        "【智读·精练 AI 学习成果报告】",
        "",
        f"文章标题：《{title}》",
        f"完成日期：{now.strftime('%Y-%m-%d %H:%M')}",
        "",
        "--- 学习概况 ---",
        f"● 积累词汇：{len(snapshot.vocabList)} 个",
        f"● 记录笔记：{len(snapshot.noteList)} 条",
        "",
    ]
    if snapshot.vocabList:
        lines.append("--- 重点生词回顾 ---")
        for i, v in enumerate(snapshot.vocabList, start=1):
            lines.append(f"{i}. {v.word} [{v.pinyin or ''}]")
            lines.append(f"   {v.definition or '暂无释义'}")
            lines.append("")
    if snapshot.noteList:
        lines.append("--- 阅读笔记摘要 ---")
        for i, n in enumerate(snapshot.noteList, start=1):
            lines.append(f"【笔记 {i}】")
            lines.append(f"原文：{n.selectedText}")
            lines.append(f"解析：{n.aiAnalysis}")
            lines.append("")
    lines.append("此报告由 智读·精练 (SmartRead) AI 系统自动生成。")
    return "\n".join(lines)


def export_docx(snapshot: SessionSnapshot, *, exercise: GeneratedExercise | None = None) -> bytes:
    article = snapshot.article
    doc = Document()
    doc.add_heading(f"《{article.title}》学习手册" if article else "学习手册", level=1)
    doc.add_paragraph(f"生成时间：{datetime.now().strftime('%Y-%m-%d %H:%M')}")

    if snapshot.outline:
        doc.add_heading("导读大纲", level=2)
        for _, title, text in snapshot.outline.sections():
            doc.add_paragraph(title, style="List Number")
            doc.add_paragraph(text)

    doc.add_heading("生词", level=2)
    if snapshot.vocabList:
        for v in snapshot.vocabList:
            head = f"{v.word}（{v.pinyin}）" if v.pinyin else v.word
            doc.add_paragraph(f"{head}：{v.definition or '暂无释义'}")
            if v.exampleSentence:
                doc.add_paragraph(f"例句：{v.exampleSentence}")
    else:
        doc.add_paragraph("（暂无生词）")

    doc.add_heading("阅读笔记", level=2)
    if snapshot.noteList:
        for idx, n in enumerate(snapshot.noteList, start=1):
            doc.add_paragraph(f"笔记 {idx}：{n.selectedText}")
            doc.add_paragraph(f"AI 解析：{n.aiAnalysis}")
            if n.userComment:
                doc.add_paragraph(f"我的心得：{n.userComment}")
    else:
        doc.add_paragraph("（暂无笔记）")

    if article:
        doc.add_heading("原文填空", level=2)
        for segments in build_cloze(article.paragraphs, snapshot.vocabList):
            doc.add_paragraph("".join("（____）" if s.is_blank else s.text for s in segments))

    if exercise and exercise.writingPrompt:
        doc.add_heading("写作练习", level=2)
        doc.add_paragraph(exercise.writingPrompt)
        for tip in exercise.writingTips:
            doc.add_paragraph(tip, style="List Bullet")

    bio = BytesIO()
    doc.save(bio)
    return bio.getvalue()


class Workshop:
    """
    Post-reading workshop: AI exercise metadata and vocabulary enrichment are
    fetched concurrently; failures fall back to an empty exercise and
    placeholder images.
    """

    def __init__(
        self,
        snapshot: SessionSnapshot,
        ai: StudyAI,
        *,
        on_enriched: Callable[[list[Vocabulary]], None] | None = None,
    ) -> None:
        if snapshot.article is None:
            raise ValueError("Workshop needs an article")
        self.snapshot = snapshot
        self.article = snapshot.article
        self.ai = ai
        self.on_enriched = on_enriched
        self.loading = False
        self.exercise = GeneratedExercise()
        self.vocab_cards: list[Vocabulary] = with_placeholders(snapshot.vocabList)
        self.cloze = build_cloze(self.article.paragraphs, snapshot.vocabList)
        self.focused_index: int | None = None
        self.flipped = False
        self.closed = False

    def close(self) -> None:
        """Detach from the session; a load still in flight applies nothing."""
        self.closed = True
        self.on_enriched = None

    async def load(self) -> None:
        self.loading = True
        try:
            exercise, enriched = await asyncio.gather(
                self.ai.workshop_content(self.article.content, self.snapshot.vocabList, self.snapshot.noteList),
                self.ai.enrich_vocabulary(list(self.snapshot.vocabList)),
                return_exceptions=True,
            )
            if self.closed:
                logger.debug("Workshop closed during load, dropping results")
                return
            if isinstance(exercise, BaseException):
                logger.warning("Workshop exercise failed: %s", exercise)
                exercise = GeneratedExercise()
            if isinstance(enriched, BaseException):
                logger.warning("Vocabulary enrichment failed: %s", enriched)
                enriched = list(self.snapshot.vocabList)
            self.exercise = exercise
            self.vocab_cards = with_placeholders(enriched)
            if self.on_enriched is not None:
                self.on_enriched(enriched)
        finally:
            self.loading = False

    def cloze_html(self) -> list[str]:
        return [render_cloze_html(segments) for segments in self.cloze]

    # Flashcards wrap around in both directions.

    def focus(self, index: int) -> None:
        if not 0 <= index < len(self.vocab_cards):
            raise IndexError(index)
        self.focused_index = index
        self.flipped = False

    def next_card(self) -> None:
        if self.focused_index is None or not self.vocab_cards:
            return
        self.focused_index = (self.focused_index + 1) % len(self.vocab_cards)
        self.flipped = False

    def prev_card(self) -> None:
        if self.focused_index is None or not self.vocab_cards:
            return
        self.focused_index = (self.focused_index - 1) % len(self.vocab_cards)
        self.flipped = False

    def flip(self) -> None:
        if self.focused_index is not None:
            self.flipped = not self.flipped

    def close_card(self) -> None:
        self.focused_index = None
        self.flipped = False
