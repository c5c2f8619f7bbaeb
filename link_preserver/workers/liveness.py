"""Phase 1: connectivity-only liveness probe.

The probe only distinguishes "the host answered" from "the request failed or
timed out".  The response status and body are never inspected, so a host
serving a 404 or 410 page counts as alive.  This catches the common forms of
link rot (expired domains, shut-down servers, DNS that no longer resolves)
without downloading page content.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from link_preserver.models.links.results import LivenessResult
from link_preserver.services.cache.timed_cache import LIVENESS, TimedCache
from link_preserver.workers.http_client import get_http_client

logger = logging.getLogger(__name__)

_NO_STORE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


class LivenessProbe:
    def __init__(
        self,
        cache: TimedCache,
        *,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._cache = cache
        self._timeout = timeout
        self._client = client

    async def probe(self, url: str) -> LivenessResult:
        """Return whether *url*'s host responds, using the cache when possible.

        Both outcomes are written back so neither a live nor a dead host is
        probed again before the liveness TTL lapses.
        """
        cached = await self._cache.get(LIVENESS, url)
        if isinstance(cached, dict) and isinstance(cached.get("alive"), bool):
            return LivenessResult(alive=cached["alive"])

        alive = await self._reachable(url)
        await self._cache.set(LIVENESS, url, {"alive": alive})
        return LivenessResult(alive=alive)

    async def _reachable(self, url: str) -> bool:
        try:
            # wait_for cancels the request on timeout, which closes the connection.
            await asyncio.wait_for(self._request(url), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.info("Liveness probe timed out after %.1fs: %s", self._timeout, url)
            return False
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.info("Liveness probe failed for %s: %r", url, exc)
            return False
        return True

    async def _request(self, url: str) -> None:
        client = self._client or get_http_client()
        async with client.stream("GET", url, headers=_NO_STORE_HEADERS):
            # Headers arrived; the status is deliberately ignored.
            pass
