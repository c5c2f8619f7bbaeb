from __future__ import annotations

import asyncio
from typing import Any, Optional


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeTransport:
    """In-memory ``ArchiveTransport`` recording every requested URL."""

    def __init__(self, documents: Optional[dict[str, Any]] = None, delay: float = 0.0) -> None:
        self.documents = documents or {}
        self.delay = delay
        self.calls: list[str] = []

    async def fetch_availability(self, url: str) -> Optional[dict[str, Any]]:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.documents.get(url, {"archived_snapshots": {}})


def snapshot_document(timestamp: str = "20230101000000", url: str = "x") -> dict[str, Any]:
    return {
        "archived_snapshots": {
            "closest": {
                "available": True,
                "url": f"http://web.archive.org/web/{timestamp}/{url}",
                "timestamp": timestamp,
                "status": "200",
            }
        }
    }
