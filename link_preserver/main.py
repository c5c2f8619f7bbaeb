from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from pymongo.errors import PyMongoError

from link_preserver.api.router import router
from link_preserver.core.config import settings
from link_preserver.core.database import db
from link_preserver.repositories.cache.repository import CacheRepository
from link_preserver.services.cache.timed_cache import CacheStore, MemoryCacheStore
from link_preserver.services.links.checker import build_cache
from link_preserver.workers.http_client import close_http_client
from link_preserver.workers.throttle import Throttle

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure the ``link_preserver`` logger namespace.

    ``logging.basicConfig`` is a no-op when uvicorn has already installed
    root handlers, so the package namespace gets its own handler and does
    not propagate.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    app_log = logging.getLogger("link_preserver")
    app_log.setLevel(level)
    if not app_log.handlers:
        app_log.addHandler(handler)
    app_log.propagate = False


_configure_logging()


async def _open_store() -> CacheStore:
    """Open the configured cache store.

    The cache only saves network round trips, so an unreachable MongoDB
    downgrades to the in-process store instead of failing startup.
    """
    if settings.cache_backend == "mongo":
        try:
            await db.connect()
            store = CacheRepository.from_db(db)
            await store.ensure_indexes()
            return store
        except PyMongoError as exc:
            logger.warning(
                "MongoDB cache unavailable (%s); falling back to the in-memory cache.", exc
            )
            await db.disconnect()
    return MemoryCacheStore(max_entries=settings.memory_cache_max_entries)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # ── Startup ──────────────────────────────────────────────────────
    app.state.cache = build_cache(await _open_store(), settings)
    # One throttle per process keeps archive.org requests spaced across
    # concurrent API calls.
    app.state.throttle = Throttle(settings.archive_throttle_delay_ms / 1000)
    yield
    # ── Shutdown ─────────────────────────────────────────────────────
    await app.state.throttle.aclose()
    await close_http_client()
    await db.disconnect()


app = FastAPI(
    title="Link Preserver",
    description="Checks external links for liveness and finds Wayback Machine "
    "snapshots of the dead ones.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
