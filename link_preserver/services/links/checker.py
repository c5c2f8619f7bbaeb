from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional
from urllib.parse import urljoin, urlsplit

from pydantic import HttpUrl, TypeAdapter, ValidationError

from link_preserver.core.config import Settings
from link_preserver.models.links.results import (
    ArchiveResult,
    CheckReport,
    CheckResult,
    LinkTarget,
)
from link_preserver.services.cache.timed_cache import MS_PER_DAY, CacheStore, TimedCache
from link_preserver.workers.archive import ArchiveClient, HttpArchiveTransport
from link_preserver.workers.liveness import LivenessProbe
from link_preserver.workers.pool import run_all
from link_preserver.workers.throttle import Throttle

logger = logging.getLogger(__name__)

ResultCallback = Callable[[CheckResult], None]

_HTTP_URL = TypeAdapter(HttpUrl)


def _is_archive_host(hostname: str) -> bool:
    return hostname == "archive.org" or hostname.endswith(".archive.org")


def build_targets(hrefs: Iterable[str], page_url: Optional[str] = None) -> list[LinkTarget]:
    """Turn raw ``href`` values into one ``LinkTarget`` per external URL.

    Relative values are resolved against *page_url*.  Non-http(s) links,
    links back to the page's own host and links into archive.org are
    skipped.  Occurrences are the positions of the hrefs in *hrefs*.
    """
    own_host = (urlsplit(page_url).hostname or "") if page_url else ""
    by_url: dict[str, LinkTarget] = {}

    for position, href in enumerate(hrefs):
        href = href.strip()
        if not href or href.lower().startswith("mailto:"):
            continue
        absolute = urljoin(page_url, href) if page_url else href
        try:
            normalized = _HTTP_URL.validate_python(absolute)
        except ValidationError:
            continue

        hostname = (normalized.host or "").lower()
        if (own_host and hostname == own_host.lower()) or _is_archive_host(hostname):
            continue

        url = str(normalized)
        if url not in by_url:
            by_url[url] = LinkTarget(url=url)
        by_url[url].occurrences.append(position)

    return list(by_url.values())


def select_targets(
    targets: Iterable[LinkTarget], max_urls: int
) -> tuple[list[LinkTarget], list[str]]:
    """Merge duplicate URLs and apply the per-run cap.

    Returns the retained targets in discovery order and the URLs dropped by
    the cap.  Dropped URLs are never checked.
    """
    merged: dict[str, LinkTarget] = {}
    for target in targets:
        if target.url in merged:
            merged[target.url].occurrences.extend(target.occurrences)
        else:
            merged[target.url] = LinkTarget(
                url=target.url, occurrences=list(target.occurrences)
            )
    ordered = list(merged.values())
    return ordered[:max_urls], [target.url for target in ordered[max_urls:]]


class LinkChecker:
    """Two-phase link check.

    Phase 1 probes every retained URL with bounded concurrency.  Once all
    probes have resolved, phase 2 looks up archive snapshots for the dead
    URLs only, one at a time through the archive client's throttle.  Each
    ``CheckResult`` is emitted as soon as its URL reaches a terminal state.
    """

    def __init__(
        self,
        probe: LivenessProbe,
        archive: ArchiveClient,
        *,
        concurrency: int = 6,
        max_urls: int = 30,
    ) -> None:
        self._probe = probe
        self._archive = archive
        self._concurrency = concurrency
        self._max_urls = max_urls

    async def run(self, targets: Iterable[LinkTarget], on_result: ResultCallback) -> list[str]:
        """Check *targets*, calling *on_result* once per retained URL.

        Returns the URLs dropped by the per-run cap.
        """
        retained, skipped = select_targets(targets, self._max_urls)
        if skipped:
            logger.info(
                "Checking %d URLs, skipping %d over the limit of %d",
                len(retained),
                len(skipped),
                self._max_urls,
            )
        if not retained:
            return skipped

        async def probe_one(target: LinkTarget) -> bool:
            result = await self._probe.probe(target.url)
            if result.alive:
                on_result(CheckResult(url=target.url, occurrences=target.occurrences, alive=True))
            return result.alive

        # Phase 1 is a barrier: no lookup starts before every probe resolved.
        alive = await run_all(
            [partial(probe_one, target) for target in retained], self._concurrency
        )
        dead = [target for target, is_alive in zip(retained, alive) if not is_alive]
        if not dead:
            return skipped

        logger.info("%d of %d links unreachable; looking up archives", len(dead), len(retained))

        def emit(target: LinkTarget, archive: ArchiveResult) -> None:
            on_result(
                CheckResult(
                    url=target.url,
                    occurrences=target.occurrences,
                    alive=False,
                    archive=archive,
                )
            )

        async def resolve(target: LinkTarget, pending: Awaitable[ArchiveResult]) -> None:
            emit(target, await pending)

        hits = await asyncio.gather(*(self._archive.cached(target.url) for target in dead))
        # Throttle slots are claimed in one synchronous pass, in discovery order.
        lookups = []
        for target, hit in zip(dead, hits):
            if hit is not None:
                emit(target, hit)
            else:
                lookups.append(resolve(target, self._archive.submit(target.url)))
        await asyncio.gather(*lookups)
        return skipped

    async def check(self, targets: Iterable[LinkTarget]) -> CheckReport:
        """Run a full check and collect the results in emission order."""
        results: list[CheckResult] = []
        skipped = await self.run(targets, results.append)
        return CheckReport(results=results, skipped=skipped)

    async def stream(self, targets: Iterable[LinkTarget]) -> AsyncIterator[CheckResult]:
        """Yield each ``CheckResult`` as soon as it is terminal."""
        queue: asyncio.Queue[Optional[CheckResult]] = asyncio.Queue()

        async def produce() -> None:
            try:
                await self.run(targets, queue.put_nowait)
            finally:
                queue.put_nowait(None)

        producer = asyncio.ensure_future(produce())
        try:
            while (result := await queue.get()) is not None:
                yield result
            await producer
        finally:
            if not producer.done():
                producer.cancel()


def build_link_checker(cache: TimedCache, throttle: Throttle, settings: Settings) -> LinkChecker:
    """Wire a ``LinkChecker`` from settings around the process-wide cache and throttle."""
    probe = LivenessProbe(cache, timeout=settings.liveness_timeout_ms / 1000)
    archive = ArchiveClient(
        cache,
        HttpArchiveTransport(
            endpoint=settings.archive_endpoint,
            use_jsonp=settings.archive_use_jsonp,
        ),
        throttle,
        timeout=settings.archive_timeout_ms / 1000,
        failure_ttl_ms=settings.archive_failure_ttl_minutes * 60_000,
    )
    return LinkChecker(
        probe,
        archive,
        concurrency=settings.liveness_concurrency,
        max_urls=settings.max_urls_per_run,
    )


def build_cache(store: CacheStore, settings: Settings) -> TimedCache:
    return TimedCache(
        store,
        liveness_ttl_ms=settings.liveness_ttl_days * MS_PER_DAY,
        archive_ttl_ms=settings.archive_ttl_days * MS_PER_DAY,
    )
