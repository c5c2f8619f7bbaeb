from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from helpers import FakeClock
from link_preserver.main import app
from link_preserver.services.cache.timed_cache import MS_PER_DAY, MemoryCacheStore, TimedCache


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def cache(store, clock) -> TimedCache:
    return TimedCache(
        store, liveness_ttl_ms=MS_PER_DAY, archive_ttl_ms=7 * MS_PER_DAY, clock=clock
    )


@pytest.fixture
def client():
    """TestClient on the in-memory cache backend with HTTP client shutdown mocked."""
    with (
        patch("link_preserver.main.settings.cache_backend", "memory"),
        patch("link_preserver.main.close_http_client", new_callable=AsyncMock),
    ):
        with TestClient(app) as c:
            yield c
