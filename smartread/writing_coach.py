from __future__ import annotations

import logging
from typing import Literal

from smartread.ai_service import StudyAI
from smartread.schemas import Article, ChatMessage

logger = logging.getLogger(__name__)

START_MESSAGE = "[SYSTEM_START]"

QUICK_ACTIONS: dict[str, str] = {
    "start": "我还没有思路，我不确定怎么开始。",
    "review": "请帮我点评一下我现在写的内容，有哪些地方可以优化？",
    "vocab": "针对这个题目，有哪些好词好句或者成语推荐我使用吗？",
}

QuickAction = Literal["start", "review", "vocab"]


class WritingCoach:
    """Chat-style writing tutor bound to one writing prompt and one draft."""

    def __init__(self, ai: StudyAI, prompt: str, tips: list[str], article: Article) -> None:
        self.ai = ai
        self.prompt = prompt
        self.tips = list(tips)
        self.article = article
        self.messages: list[ChatMessage] = []
        self.draft = ""
        self.is_typing = False
        self.started = False

    async def start(self) -> str | None:
        """Open the conversation with a hidden message; runs once."""
        if self.started or self.messages:
            return None
        self.started = True
        return await self._ask(START_MESSAGE, hidden=True)

    async def send(self, query: str) -> str | None:
        query = (query or "").strip()
        if not query:
            return None
        return await self._ask(query, hidden=False)

    async def quick_action(self, action: QuickAction) -> str | None:
        if action not in QUICK_ACTIONS:
            raise ValueError(f"Unknown quick action: {action}")
        return await self._ask(QUICK_ACTIONS[action], hidden=False)

    async def _ask(self, query: str, *, hidden: bool) -> str:
        # The model sees the visible history prior to this turn.
        history = list(self.messages)
        if not hidden:
            self.messages.append(ChatMessage(role="user", text=query))
        self.is_typing = True
        try:
            guidance = await self.ai.writing_guidance(self.prompt, self.draft, query, history, self.article.content)
        finally:
            self.is_typing = False
        self.messages.append(ChatMessage(role="ai", text=guidance.reply))
        if guidance.draftContent:
            self.append_draft(guidance.draftContent)
        return guidance.reply

    def append_draft(self, content: str) -> None:
        separator = "\n" if self.draft and not self.draft.endswith("\n") else ""
        self.draft = self.draft + separator + content

    def set_draft(self, draft: str) -> None:
        self.draft = draft
