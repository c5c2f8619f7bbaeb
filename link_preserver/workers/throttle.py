"""Sequential executor with a minimum gap between tasks.

archive.org rate-limits its availability API informally (per minute).  Lookups
are capped per run anyway, so spacing them out one at a time is enough; no
token bucket is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class Throttle:
    """Runs submitted tasks strictly one at a time.

    At least ``delay`` seconds separate the completion of one task and the
    start of the next, including when the next task arrives after the queue
    went idle.  A task that raises resolves its future with ``None``; later
    tasks still run.
    """

    def __init__(self, delay: float = 0.35) -> None:
        self.delay = delay
        self._pending: deque[tuple[TaskFactory, asyncio.Future]] = deque()
        self._drainer: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def add(self, task: TaskFactory) -> asyncio.Future:
        """Queue *task* and return a future resolved with its result (or ``None``)."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._pending.append((task, future))
        if self._drainer is None or self._drainer.done():
            self._drainer = loop.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            if self._pending[0][1].done():
                # Caller gave up while the task was queued.
                self._pending.popleft()
                continue

            if self._last_finished is not None:
                while (wait := self.delay - (loop.time() - self._last_finished)) > 0:
                    await asyncio.sleep(wait)

            task, future = self._pending.popleft()
            if future.done():
                continue
            try:
                result = await task()
            except asyncio.CancelledError:
                if not future.done():
                    future.set_result(None)
                raise
            except Exception as exc:
                logger.warning("Throttled task failed: %r", exc)
                result = None
            finally:
                self._last_finished = loop.time()

            if not future.done():
                future.set_result(result)

    async def aclose(self) -> None:
        """Stop processing and resolve every queued future with ``None``."""
        if self._drainer is not None and not self._drainer.done():
            self._drainer.cancel()
            try:
                await self._drainer
            except asyncio.CancelledError:
                pass
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.set_result(None)
        self._drainer = None
