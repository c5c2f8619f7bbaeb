"""Phase 2: Wayback Machine availability lookups.

Only URLs that failed the liveness probe get here.  Requests go through a
shared ``Throttle`` so archive.org sees them one at a time, spaced by the
configured delay.

Wire contract::

    GET https://archive.org/wayback/available?url=<url>[&callback=<token>]

    {"archived_snapshots": {"closest": {"available": true,
                                        "url": "http://web.archive.org/web/...",
                                        "timestamp": "20230101000000"}}}
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Any, Awaitable, Optional, Protocol

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    wait_exponential,
)

from link_preserver.core.config import settings
from link_preserver.models.links.results import (
    Archived,
    NotArchived,
    archive_result_from_payload,
    upgrade_to_https,
)
from link_preserver.services.cache.timed_cache import ARCHIVE, TimedCache
from link_preserver.workers.http_client import get_http_client
from link_preserver.workers.throttle import Throttle

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 503})


class ArchiveTransport(Protocol):
    """Fetches the raw availability document for a URL.

    Returns ``None`` when the document could not be obtained.
    """

    async def fetch_availability(self, url: str) -> Optional[dict[str, Any]]: ...


class ArchiveRateLimited(Exception):
    """archive.org answered 429/503; the request is worth retrying."""


def parse_availability(data: Any) -> Archived | NotArchived:
    """Map an availability document to an archive result.

    Anything other than ``archived_snapshots.closest.available is True`` with
    a snapshot URL is ``NotArchived``.
    """
    if not isinstance(data, dict):
        return NotArchived()
    snapshots = data.get("archived_snapshots")
    closest = snapshots.get("closest") if isinstance(snapshots, dict) else None
    if not isinstance(closest, dict) or closest.get("available") is not True:
        return NotArchived()

    snapshot_url = closest.get("url")
    if not isinstance(snapshot_url, str) or not snapshot_url:
        return NotArchived()
    return Archived(
        archive_url=upgrade_to_https(snapshot_url),
        snapshot_time=str(closest.get("timestamp") or ""),
    )


def _unwrap_jsonp(text: str, callback: str) -> str:
    """Strip a ``callback(...)`` / ``callback(...);`` wrapper if present."""
    body = text.strip()
    if body.startswith(callback + "("):
        body = body[len(callback) + 1 :].rstrip().rstrip(";").rstrip()
        if body.endswith(")"):
            body = body[:-1]
    return body


@retry(
    retry=retry_if_exception_type(ArchiveRateLimited),
    stop=lambda rs: rs.attempt_number >= settings.archive_max_retries + 1,
    wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=False,
)
async def _get_availability(
    client: httpx.AsyncClient, endpoint: str, url: str, callback: Optional[str]
) -> httpx.Response:
    """Single availability request; tenacity retries rate-limit answers."""
    params = {"url": url}
    if callback:
        params["callback"] = callback
    response = await client.get(endpoint, params=params)
    if response.status_code in RETRY_STATUSES:
        raise ArchiveRateLimited(f"archive.org answered {response.status_code}")
    return response


class HttpArchiveTransport:
    """Reads the availability API directly over HTTP.

    With ``use_jsonp`` the request carries a random ``callback`` token and
    the JSONP wrapper is stripped from the answer.
    """

    def __init__(
        self,
        *,
        endpoint: str = "https://archive.org/wayback/available",
        use_jsonp: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.use_jsonp = use_jsonp
        self._client = client

    async def fetch_availability(self, url: str) -> Optional[dict[str, Any]]:
        client = self._client or get_http_client()
        callback = "_wlp_" + secrets.token_hex(5) if self.use_jsonp else None
        try:
            response = await _get_availability(client, self.endpoint, url, callback)
            response.raise_for_status()
        except RetryError as exc:
            logger.warning(
                "Availability lookup for %s gave up after %d attempts: %s",
                url,
                settings.archive_max_retries + 1,
                exc.last_attempt.exception(),
            )
            return None
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Availability lookup failed for %s: %r", url, exc)
            return None

        text = _unwrap_jsonp(response.text, callback) if callback else response.text
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Malformed availability response for %s", url)
            return {}
        return data if isinstance(data, dict) else {}


class ArchiveClient:
    """Cached, throttled availability lookups.

    Args:
        cache: shared ``TimedCache``; results live in the archive namespace.
        transport: how availability documents are fetched.
        throttle: serializes the remote requests.
        timeout: seconds allowed for one remote lookup.
        failure_ttl_ms: TTL for lookups that timed out or errored.  Kept
            shorter than the archive TTL so a transient failure is retried
            soon instead of hiding a snapshot for days.
    """

    def __init__(
        self,
        cache: TimedCache,
        transport: ArchiveTransport,
        throttle: Throttle,
        *,
        timeout: float = 10.0,
        failure_ttl_ms: float = 3_600_000,
    ) -> None:
        self._cache = cache
        self._transport = transport
        self._throttle = throttle
        self._timeout = timeout
        self._failure_ttl_ms = failure_ttl_ms

    async def lookup(self, url: str) -> Archived | NotArchived:
        cached = await self.cached(url)
        if cached is not None:
            return cached
        return await self.submit(url)

    async def cached(self, url: str) -> Archived | NotArchived | None:
        """Return the cached result for *url*, or ``None`` on a miss."""
        return archive_result_from_payload(await self._cache.get(ARCHIVE, url))

    def submit(self, url: str) -> Awaitable[Archived | NotArchived]:
        """Queue a remote lookup for *url* on the throttle right away.

        The queue position is taken before this returns, so calling
        ``submit`` in a loop keeps the requests in call order.  Await the
        result to get the parsed (and cached) answer.
        """
        return self._complete(url, self._throttle.add(lambda: self._fetch(url)))

    async def _complete(
        self, url: str, pending: Awaitable[Optional[dict[str, Any]]]
    ) -> Archived | NotArchived:
        data = await pending
        if data is None:
            result = NotArchived(lookup_failed=True)
            await self._cache.set(ARCHIVE, url, result.to_payload(), ttl=self._failure_ttl_ms)
            return result

        result = parse_availability(data)
        await self._cache.set(ARCHIVE, url, result.to_payload())
        if isinstance(result, Archived):
            logger.info("Snapshot found for %s: %s", url, result.archive_url)
        return result

    async def _fetch(self, url: str) -> Optional[dict[str, Any]]:
        try:
            return await asyncio.wait_for(
                self._transport.fetch_availability(url), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Availability lookup timed out after %.1fs: %s", self._timeout, url
            )
            return None
