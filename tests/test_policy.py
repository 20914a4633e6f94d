"""Tests for the policy gate and the per-run robots cache.

Mocking strategy:
- ``respx`` serves each origin's ``/robots.txt``; everything else a gate
  test touches is decided without a fetch.
- Each test drives the async gate with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio

import httpx
import respx

from site_archiver.crawler.fetcher import Fetcher
from site_archiver.crawler.models import DenyReason
from site_archiver.crawler.policy import PolicyGate, RobotsCache
from site_archiver.crawler.runlog import LogKind, ResourceCounter, RunLog

SEED = "https://example.com/"
ROBOTS = "https://example.com/robots.txt"

_ROBOTS_TXT = """\
User-agent: *
Disallow: /private/

User-agent: BadBot
Disallow: /
"""


def _gate_run(scenario, ceiling: int = 1000):
    """Run ``scenario(gate, log)`` against a fresh gate and return its result."""

    async def _go():
        log = RunLog("test")
        async with Fetcher() as fetcher:
            gate = PolicyGate(RobotsCache(fetcher), ResourceCounter(ceiling), log)
            return await scenario(gate, log)

    return asyncio.run(_go())


def _robots(router, text: str = "", status: int = 200):
    return router.get(ROBOTS).mock(return_value=httpx.Response(status, text=text))


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

class TestAdmit:
    @respx.mock
    def test_same_origin_is_allowed_and_path_assigned(self):
        _robots(respx)

        async def scenario(gate, log):
            return await gate.admit("https://example.com/css/site.css", SEED)

        decision = _gate_run(scenario)
        assert decision.allowed
        assert decision.path == "example.com/css/site.css"

    @respx.mock
    def test_second_admission_is_duplicate(self):
        _robots(respx)

        async def scenario(gate, log):
            first = await gate.admit("https://example.com/a.png", SEED)
            second = await gate.admit("https://EXAMPLE.com/a.png#frag", SEED)
            return first, second, log

        first, second, log = _gate_run(scenario)
        assert first.allowed
        assert second.reason is DenyReason.DUPLICATE
        assert log.lines()[-1] == "[SKIP] duplicate: https://example.com/a.png"

    @respx.mock
    def test_cross_origin(self):
        _robots(respx)

        async def scenario(gate, log):
            return [
                await gate.admit("https://cdn.other.com/x.js", SEED),
                await gate.admit("http://example.com/x.js", SEED),
                await gate.admit("https://example.com:8443/x.js", SEED),
            ]

        decisions = _gate_run(scenario)
        assert [d.reason for d in decisions] == [DenyReason.CROSS_ORIGIN] * 3

    @respx.mock
    def test_inline_schemes(self):
        _robots(respx)

        async def scenario(gate, log):
            return [
                await gate.admit("data:image/png;base64,AAAA", SEED),
                await gate.admit("javascript:void(0)", SEED),
                await gate.admit("mailto:me@example.com", SEED),
            ]

        decisions = _gate_run(scenario)
        assert [d.reason for d in decisions] == [DenyReason.INLINE] * 3

    @respx.mock
    def test_excluded_by_robots(self):
        _robots(respx, _ROBOTS_TXT)

        async def scenario(gate, log):
            return (
                await gate.admit("https://example.com/private/secret.html", SEED),
                await gate.admit("https://example.com/public.html", SEED),
            )

        private, public = _gate_run(scenario)
        assert private.reason is DenyReason.EXCLUDED
        assert public.allowed

    @respx.mock
    def test_same_archive_path_is_duplicate(self):
        _robots(respx)

        async def scenario(gate, log):
            return (
                await gate.admit("https://example.com/", SEED),
                await gate.admit("https://example.com/index.html", SEED),
            )

        root, index = _gate_run(scenario)
        assert root.allowed
        assert index.reason is DenyReason.DUPLICATE


# ---------------------------------------------------------------------------
# Ceiling
# ---------------------------------------------------------------------------

class TestCeiling:
    @respx.mock
    def test_ceiling_denies_and_logs_limit_once(self):
        _robots(respx)

        async def scenario(gate, log):
            decisions = [
                await gate.admit(f"https://example.com/{i}.png", SEED) for i in range(4)
            ]
            return decisions, log

        decisions, log = _gate_run(scenario, ceiling=2)
        assert [d.allowed for d in decisions] == [True, True, False, False]
        assert all(d.reason is DenyReason.CEILING for d in decisions[2:])
        assert len([r for r in log if r.kind is LogKind.LIMIT]) == 1
        assert len(log.with_reason("ceiling")) == 2

    @respx.mock
    def test_ceiling_is_checked_first(self):
        _robots(respx)

        async def scenario(gate, log):
            await gate.admit("https://example.com/a.png", SEED)
            return await gate.admit("https://example.com/a.png", SEED)

        assert _gate_run(scenario, ceiling=1).reason is DenyReason.CEILING


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrentAdmission:
    @respx.mock
    def test_racing_admissions_admit_once(self):
        _robots(respx)

        async def scenario(gate, log):
            return await asyncio.gather(
                *(gate.admit("https://example.com/shared.css", SEED) for _ in range(10))
            )

        decisions = _gate_run(scenario)
        assert sum(d.allowed for d in decisions) == 1
        assert sum(d.reason is DenyReason.DUPLICATE for d in decisions) == 9


# ---------------------------------------------------------------------------
# Robots cache
# ---------------------------------------------------------------------------

class TestRobotsCache:
    @respx.mock
    def test_fetched_once_per_origin(self):
        route = _robots(respx, _ROBOTS_TXT)

        async def scenario(gate, log):
            await asyncio.gather(
                *(gate.admit(f"https://example.com/p{i}.html", SEED) for i in range(5))
            )

        _gate_run(scenario)
        assert route.call_count == 1

    @respx.mock
    def test_unreachable_robots_allows_all(self):
        respx.get(ROBOTS).mock(side_effect=httpx.ConnectError("down"))

        async def scenario(gate, log):
            return await gate.admit("https://example.com/private/x.html", SEED)

        assert _gate_run(scenario).allowed

    @respx.mock
    def test_missing_robots_allows_all(self):
        _robots(respx, "not found", status=404)

        async def scenario(gate, log):
            return await gate.admit("https://example.com/private/x.html", SEED)

        assert _gate_run(scenario).allowed

    @respx.mock
    def test_garbage_robots_allows_all(self):
        _robots(respx, "\x00\x01 this is { not robots ]")

        async def scenario(gate, log):
            return await gate.admit("https://example.com/anything.html", SEED)

        assert _gate_run(scenario).allowed

    @respx.mock
    def test_robots_timeout_allows_all(self):
        respx.get(ROBOTS).mock(side_effect=httpx.ReadTimeout("slow"))

        async def scenario(gate, log):
            return await gate.admit("https://example.com/x.html", SEED)

        assert _gate_run(scenario).allowed

    @respx.mock
    def test_generic_identity_ignores_named_groups(self):
        _robots(respx, "User-agent: BadBot\nDisallow: /\n")

        async def check():
            async with Fetcher() as fetcher:
                return await RobotsCache(fetcher).is_allowed("https://example.com/page.html")

        assert asyncio.run(check())
