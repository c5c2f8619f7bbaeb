from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")


async def run_all(
    tasks: Sequence[Callable[[], Awaitable[T]]], concurrency: int
) -> list[T]:
    """Run *tasks* with at most *concurrency* of them in flight.

    ``min(concurrency, len(tasks))`` workers share one pending queue; each
    pulls the next task, awaits it and loops until the queue is empty.  The
    returned list is aligned with *tasks* whatever the completion order.
    Exceptions are not retried; the first one propagates.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    results: list[T] = [None] * len(tasks)  # type: ignore[list-item]
    pending = deque(enumerate(tasks))

    async def worker() -> None:
        while pending:
            index, task = pending.popleft()
            results[index] = await task()

    await asyncio.gather(*(worker() for _ in range(min(concurrency, len(tasks)))))
    return results
