"""Shared ``httpx.AsyncClient`` used by the liveness probe and the archive
transport.

The client is meant to be long-lived and reused; ``get_http_client`` creates
it lazily and ``close_http_client`` is called from the lifespan shutdown.
Per-request timeouts are enforced by the callers, not by the client.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from link_preserver.core.config import settings

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared AsyncClient.  Creates one if missing."""
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(None),
            follow_redirects=True,
            verify=settings.http_verify_ssl,
            headers={"User-Agent": settings.user_agent},
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client  # noqa: PLW0603
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed.")
