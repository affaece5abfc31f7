from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class UsageRecorder(Protocol):
    def record(self) -> None: ...


class NoopUsageRecorder:
    """Usage accounting is disabled in the current deployment."""

    def __init__(self) -> None:
        self.calls = 0

    def record(self) -> None:
        self.calls += 1


class HttpUsageRecorder:
    """
    Fire-and-forget POST to the usage endpoint. Never blocks the caller and
    never raises; failures are only logged.
    """

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    def record(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; usage not recorded")
            return
        task = loop.create_task(self._send())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.url, headers={"Content-Type": "application/json"})
            if r.status_code >= 400:
                logger.warning("Usage increment failed: %s %s", r.status_code, r.text[:200])
        except Exception as e:
            logger.warning("Usage increment error: %s", e)


def make_usage_recorder(url: str | None) -> UsageRecorder:
    if url:
        return HttpUsageRecorder(url)
    return NoopUsageRecorder()
