"""LinkChecker tests.

Liveness traffic is mocked with respx; archive lookups go through an
in-memory transport so every remote request can be counted.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from helpers import FakeTransport, snapshot_document
from link_preserver.core.config import Settings
from link_preserver.models.links.results import Archived, CheckResult, LinkTarget, NotArchived
from link_preserver.services.cache.timed_cache import ARCHIVE, MemoryCacheStore, TimedCache
from link_preserver.services.links.checker import (
    LinkChecker,
    build_cache,
    build_link_checker,
    build_targets,
    select_targets,
)
from link_preserver.workers.archive import ArchiveClient, HttpArchiveTransport
from link_preserver.workers.liveness import LivenessProbe
from link_preserver.workers.throttle import Throttle

ALIVE = "https://alive.example/"
DEAD = "https://dead.example/"
GONE = "https://gone.example/"


def targets(*urls: str) -> list[LinkTarget]:
    return [LinkTarget(url=url, occurrences=[index]) for index, url in enumerate(urls)]


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient(follow_redirects=True) as c:
        yield c


@pytest.fixture
def transport():
    return FakeTransport({DEAD: snapshot_document(url="dead")})


@pytest.fixture
def make_checker(cache, http_client, transport):
    def make(max_urls: int = 30, concurrency: int = 6, delay: float = 0) -> LinkChecker:
        probe = LivenessProbe(cache, timeout=0.5, client=http_client)
        archive = ArchiveClient(cache, transport, Throttle(delay=delay), timeout=0.5)
        return LinkChecker(probe, archive, concurrency=concurrency, max_urls=max_urls)

    return make


class SlowReadStore(MemoryCacheStore):
    """Store whose reads of some keys take longer, like a pooled database."""

    def __init__(self) -> None:
        super().__init__()
        self.delays: dict[str, float] = {}

    async def read(self, key):
        await asyncio.sleep(self.delays.get(key, 0))
        return await super().read(key)


@pytest.fixture
def network():

    with respx.mock(assert_all_called=False) as router:
        router.get(ALIVE).mock(return_value=httpx.Response(200))
        router.get(DEAD).mock(side_effect=httpx.ConnectError("refused"))
        router.get(GONE).mock(side_effect=httpx.ConnectError("nxdomain"))
        yield router


# ---------------------------------------------------------------------------
# Target selection
# ---------------------------------------------------------------------------


class TestSelectTargets:
    def test_duplicates_are_merged_in_discovery_order(self):
        retained, skipped = select_targets(
            [
                LinkTarget(url=DEAD, occurrences=["a"]),
                LinkTarget(url=ALIVE, occurrences=["b"]),
                LinkTarget(url=DEAD, occurrences=["c", "d"]),
            ],
            max_urls=30,
        )
        assert [t.url for t in retained] == [DEAD, ALIVE]
        assert retained[0].occurrences == ["a", "c", "d"]
        assert skipped == []

    def test_cap_keeps_first_urls_and_reports_the_rest(self):
        urls = [f"https://site{n}.example/" for n in range(5)]
        retained, skipped = select_targets(targets(*urls), max_urls=3)
        assert [t.url for t in retained] == urls[:3]
        assert skipped == urls[3:]

    def test_input_targets_are_not_mutated(self):
        original = [LinkTarget(url=DEAD, occurrences=[1]), LinkTarget(url=DEAD, occurrences=[2])]
        select_targets(original, max_urls=30)
        assert original[0].occurrences == [1]


class TestBuildTargets:
    def test_filters_and_normalizes_links(self):
        result = build_targets(
            [
                "https://other.example",
                "/about",
                "https://blog.example/post",
                "mailto:me@blog.example",
                "javascript:void(0)",
                "ftp://files.example/x",
                "https://web.archive.org/web/2020/https://x.example/",
                "https://archive.org/details/x",
                "https://other.example/",
                "",
            ],
            page_url="https://blog.example/posts/1",
        )
        assert [(t.url, t.occurrences) for t in result] == [("https://other.example/", [0, 8])]

    def test_relative_links_resolve_against_page(self):
        result = build_targets(["//cdn.example/lib.js"], page_url="https://blog.example/")
        assert [t.url for t in result] == ["https://cdn.example/lib.js"]

    def test_without_page_url_relative_links_are_dropped(self):
        assert build_targets(["/about", "https://x.example/a"]) == [
            LinkTarget(url="https://x.example/a", occurrences=[1])
        ]


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class TestLinkChecker:
    async def test_alive_link_has_no_archive(self, make_checker, network, transport):
        report = await make_checker().check(targets(ALIVE))
        assert report.results == [CheckResult(url=ALIVE, occurrences=[0], alive=True)]
        assert transport.calls == []

    async def test_dead_link_gets_archive_result(self, make_checker, network):
        report = await make_checker().check(targets(DEAD, GONE))
        by_url = {r.url: r for r in report.results}

        assert by_url[DEAD].alive is False
        assert by_url[DEAD].archive == Archived(
            archive_url="https://web.archive.org/web/20230101000000/dead",
            snapshot_time="20230101000000",
        )
        assert by_url[GONE].archive == NotArchived()

    async def test_no_archive_requests_when_everything_is_alive(self, make_checker, network, transport):
        await make_checker().check(targets(ALIVE, ALIVE))
        assert transport.calls == []

    async def test_archive_is_never_asked_about_live_links(self, make_checker, network, transport):
        await make_checker().check(targets(ALIVE, DEAD, GONE))
        assert ALIVE not in transport.calls
        assert transport.calls == [DEAD, GONE]

    async def test_cap_limits_checked_urls(self, make_checker, network):
        urls = [f"https://site{n}.example/" for n in range(40)]
        routes = {url: network.get(url).mock(return_value=httpx.Response(200)) for url in urls}

        report = await make_checker(max_urls=30).check(targets(*urls))
        assert sorted(r.url for r in report.results) == sorted(urls[:30])
        assert report.skipped == urls[30:]
        assert network.calls.call_count == 30
        assert not any(routes[url].called for url in urls[30:])

    async def test_duplicates_probe_once_and_keep_all_occurrences(self, make_checker, network):
        report = await make_checker().check(
            [LinkTarget(url=DEAD, occurrences=[n]) for n in range(4)]
        )
        assert network.calls.call_count == 1
        (result,) = report.results
        assert result.occurrences == [0, 1, 2, 3]

    async def test_second_run_is_served_from_cache(self, make_checker, network, transport):
        checker = make_checker()
        first = await checker.check(targets(ALIVE, DEAD, GONE))
        calls_after_first = network.calls.call_count
        second = await checker.check(targets(ALIVE, DEAD, GONE))

        assert network.calls.call_count == calls_after_first
        assert transport.calls == [DEAD, GONE]
        assert sorted(second.results, key=lambda r: r.url) == sorted(first.results, key=lambda r: r.url)

    async def test_cached_archive_skips_phase_two_request(self, make_checker, cache, transport):
        await cache.set(ARCHIVE, DEAD, {"archiveUrl": "https://web.archive.org/web/1/dead", "snapshotTime": "20200101000000"})
        with respx.mock:
            respx.get(DEAD).mock(side_effect=httpx.ConnectTimeout("no answer"))
            report = await make_checker().check(targets(DEAD))

        (result,) = report.results
        assert result.alive is False
        assert isinstance(result.archive, Archived)
        assert transport.calls == []

    async def test_archive_timeout_gives_flagged_not_archived(self, cache, http_client, network):
        slow = FakeTransport({DEAD: snapshot_document()}, delay=1.0)
        checker = LinkChecker(
            LivenessProbe(cache, timeout=0.5, client=http_client),
            ArchiveClient(cache, slow, Throttle(delay=0), timeout=0.05),
        )
        (result,) = (await checker.check(targets(DEAD))).results
        assert result.archive == NotArchived(lookup_failed=True)

    async def test_phase_two_waits_for_every_probe(self, cache, http_client):
        probe = LivenessProbe(cache, timeout=0.5, client=http_client)
        events: list[str] = []

        class RecordingTransport(FakeTransport):
            async def fetch_availability(self, url):
                events.append(f"lookup {url}")
                return await super().fetch_availability(url)

        async def slow_alive(request):
            await asyncio.sleep(0.1)
            events.append("slow probe done")
            return httpx.Response(200)

        checker = LinkChecker(probe, ArchiveClient(cache, RecordingTransport(), Throttle(delay=0)))
        with respx.mock:
            respx.get(DEAD).mock(side_effect=httpx.ConnectError("refused"))
            respx.get(ALIVE).mock(side_effect=slow_alive)
            await checker.check(targets(DEAD, ALIVE))

        assert events == ["slow probe done", f"lookup {DEAD}"]

    async def test_phase_two_requests_are_spaced(self, cache, http_client, network):
        loop = asyncio.get_running_loop()
        spans: list[tuple[float, float]] = []

        class TimedTransport(FakeTransport):
            async def fetch_availability(self, url):
                start = loop.time()
                await asyncio.sleep(0.01)
                spans.append((start, loop.time()))
                return {}

        urls = [f"https://dead{n}.example/" for n in range(3)]
        for url in urls:
            network.get(url).mock(side_effect=httpx.ConnectError("refused"))

        checker = LinkChecker(
            LivenessProbe(cache, timeout=0.5, client=http_client),
            ArchiveClient(cache, TimedTransport(), Throttle(delay=0.05)),
        )
        await checker.check(targets(*urls))

        assert len(spans) == 3
        for (_, previous_end), (next_start, _) in zip(spans, spans[1:]):
            assert next_start - previous_end >= 0.05

    async def test_phase_two_keeps_discovery_order_with_slow_cache_reads(
        self, clock, http_client, network, transport
    ):
        urls = [f"https://dead{n}.example/" for n in range(3)]
        for url in urls:
            network.get(url).mock(side_effect=httpx.ConnectError("refused"))
        store = SlowReadStore()
        cache = TimedCache(store, clock=clock)
        store.delays[cache.storage_key(ARCHIVE, urls[0])] = 0.05

        checker = LinkChecker(
            LivenessProbe(cache, timeout=0.5, client=http_client),
            ArchiveClient(cache, transport, Throttle(delay=0)),
        )
        await checker.check(targets(*urls))

        assert transport.calls == urls

    async def test_cache_hits_do_not_disturb_lookup_order(
        self, clock, http_client, network, transport
    ):
        urls = [f"https://dead{n}.example/" for n in range(4)]
        for url in urls:
            network.get(url).mock(side_effect=httpx.ConnectError("refused"))
        store = SlowReadStore()
        cache = TimedCache(store, clock=clock)
        await cache.set(ARCHIVE, urls[1], {})
        store.delays[cache.storage_key(ARCHIVE, urls[0])] = 0.05
        store.delays[cache.storage_key(ARCHIVE, urls[2])] = 0.02

        checker = LinkChecker(
            LivenessProbe(cache, timeout=0.5, client=http_client),
            ArchiveClient(cache, transport, Throttle(delay=0)),
        )
        report = await checker.check(targets(*urls))

        assert transport.calls == [urls[0], urls[2], urls[3]]
        assert {r.url: r.archive for r in report.results}[urls[1]] == NotArchived()

    async def test_stream_emits_alive_before_archive_results(self, make_checker, network):
        seen = [result.url async for result in make_checker().stream(targets(DEAD, ALIVE))]
        assert seen == [ALIVE, DEAD]

    async def test_empty_input(self, make_checker, network, transport):
        report = await make_checker().check([])
        assert report.results == [] and report.skipped == []
        assert network.calls.call_count == 0


def test_build_link_checker_from_settings():
    cache = build_cache(None, Settings(cache_backend="memory"))
    settings = Settings(
        cache_backend="memory",
        liveness_concurrency=3,
        max_urls_per_run=10,
        archive_use_jsonp=True,
        archive_timeout_ms=2500,
    )
    checker = build_link_checker(cache, Throttle(), settings)

    assert isinstance(cache, TimedCache)
    assert checker._concurrency == 3
    assert checker._max_urls == 10
    assert checker._archive._timeout == 2.5
    assert isinstance(checker._archive._transport, HttpArchiveTransport)
    assert checker._archive._transport.use_jsonp is True
