# botrouter/infra/context_scheduler.py
"""
Periodic driver for ``cleanup_expired``.

Context expiry is cooperative: nothing reaps an expired context until this
loop (or the admin endpoint) calls the cleanup function.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from botrouter.infra.logging_config import get_logger
from botrouter.infra.metrics import inc_counter

logger = get_logger(__name__)


class ContextCleanupScheduler:
    def __init__(self, cleanup: Callable[[], Awaitable[int]], interval_seconds: float = 60.0):
        self._cleanup = cleanup
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the cleanup loop as an asyncio task."""
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="context_cleanup")
        logger.info(f"Context cleanup scheduler started: interval={self._interval}s")

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Context cleanup scheduler stopped")

    async def run_once(self) -> int:
        self.runs += 1
        expired = await self._cleanup()
        if expired:
            logger.info(f"Context cleanup: {expired} expired")
        return expired

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Context cleanup failed: {exc}", exc_info=True)
                inc_counter("context_cleanup_errors")
