"""Policy gate: decides whether a candidate URL may be fetched.

Checks, in order (the first failing check wins):

1. ``ceiling``: the run's resource ceiling has been reached.
2. ``duplicate``: the URL was already admitted in this run.
3. ``cross-origin``: scheme + host + port differ from the seed's origin.
4. ``inline``: the URL has no network location (``data:``,
   ``javascript:``, ``mailto:`` …) so there is nothing to fetch.
5. ``excluded``: the origin's robots.txt forbids the path for the
   generic crawler identity.

Admission and marking-visited happen together inside one critical section,
so two workers expanding the same link can never both admit it.  The only
suspension point, loading the origin's robots.txt, happens before the lock
is taken.

Robots policy is fetched once per origin per run.  An unreachable,
non-2xx or unparseable robots.txt means *allow*; this is deliberate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

from site_archiver.config import settings
from site_archiver.crawler.archive import archive_path
from site_archiver.crawler.fetcher import Fetcher
from site_archiver.crawler.models import Decision, DenyReason, FetchError
from site_archiver.crawler.runlog import LogKind, ResourceCounter, RunLog
from site_archiver.crawler.urls import FETCHABLE_SCHEMES, normalize_url, origin_of

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Robots.txt
# ---------------------------------------------------------------------------

class RobotsCache:
    """Per-run cache of parsed robots.txt rules, keyed by origin."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        user_agent: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._fetcher = fetcher
        self.user_agent = user_agent or settings.robots_user_agent
        self.timeout = timeout if timeout is not None else settings.robots_timeout
        self._rules: dict[str, Optional[RobotFileParser]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_loaded(self, origin: str) -> bool:
        return origin in self._rules

    async def load(self, origin: str) -> Optional[RobotFileParser]:
        """Fetch and parse ``{origin}/robots.txt`` once; later calls hit the cache."""
        if origin in self._rules:
            return self._rules[origin]
        lock = self._locks.setdefault(origin, asyncio.Lock())
        async with lock:
            if origin not in self._rules:
                self._rules[origin] = await self._fetch(origin)
        return self._rules[origin]

    async def _fetch(self, origin: str) -> Optional[RobotFileParser]:
        robots_url = f"{origin}/robots.txt"
        outcome = await self._fetcher.fetch(robots_url, timeout=self.timeout)
        if isinstance(outcome, FetchError):
            logger.info("No usable robots.txt at %s (%s); allowing all", robots_url, outcome)
            return None

        parser = RobotFileParser(robots_url)
        parser.parse(outcome.body.decode("utf-8", errors="replace").splitlines())
        return parser

    def allows(self, url: str) -> bool:
        """Return whether *url* is permitted by the already-loaded rules."""
        rules = self._rules.get(origin_of(url))
        if rules is None:
            return True
        return rules.can_fetch(self.user_agent, url)

    async def is_allowed(self, url: str) -> bool:
        await self.load(origin_of(url))
        return self.allows(url)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class PolicyGate:
    """Owns the run's visited-set and claimed archive paths.

    Every denial is written to the run log with its reason; the ceiling
    notice itself is written only once.
    """

    def __init__(self, robots: RobotsCache, counter: ResourceCounter, log: RunLog) -> None:
        self._robots = robots
        self._counter = counter
        self._log = log
        self._lock = asyncio.Lock()
        self._ceiling_logged = False
        self.visited: set[str] = set()
        self.claimed_paths: set[str] = set()

    async def admit(self, candidate_url: str, origin_base_url: str) -> Decision:
        """Decide whether *candidate_url* may be fetched in this run.

        On ``Allow`` the URL is already marked visited, its archive path is
        claimed and a ceiling slot is reserved for it.
        """
        url = normalize_url(candidate_url)
        origin = origin_of(url)
        if origin == origin_of(origin_base_url) and not self._robots.is_loaded(origin):
            await self._robots.load(origin)

        async with self._lock:
            decision = self._check(url, origin_base_url)
            if decision.allowed:
                self.visited.add(url)
                self.claimed_paths.add(decision.path)
                self._counter.reserve()

        if not decision.allowed:
            self._log.skipped(url, decision.reason.value)
        return decision

    async def check_redirect(
        self,
        url: str,
        final_url: str,
        origin_base_url: str,
        *,
        seed: bool = False,
    ) -> Optional[DenyReason]:
        """Vet the target of a redirect the fetcher followed for *url*.

        A non-seed resource may not land outside the run's origin, and any
        redirect target must be permitted by its own origin's robots.txt.
        Returns the deny reason (already logged), or ``None`` to keep the body.
        """
        target = normalize_url(final_url)
        if target == normalize_url(url):
            return None
        if not seed and origin_of(target) != origin_of(origin_base_url):
            reason = DenyReason.CROSS_ORIGIN
        elif not await self._robots.is_allowed(target):
            reason = DenyReason.EXCLUDED
        else:
            return None
        self._log.skipped(target, reason.value)
        return reason

    def _check(self, url: str, origin_base_url: str) -> Decision:
        # No awaits in here: this is the admission critical section.
        if self._counter.at_ceiling:
            if not self._ceiling_logged:
                self._ceiling_logged = True
                self._log.add(
                    LogKind.LIMIT,
                    f"resource ceiling ({self._counter.ceiling}) reached; "
                    "no further fetches",
                )
            return Decision.deny(DenyReason.CEILING)

        if url in self.visited:
            return Decision.deny(DenyReason.DUPLICATE)

        parts = urlsplit(url)
        if parts.netloc and origin_of(url) != origin_of(origin_base_url):
            return Decision.deny(DenyReason.CROSS_ORIGIN)

        if not parts.netloc or parts.scheme.lower() not in FETCHABLE_SCHEMES:
            return Decision.deny(DenyReason.INLINE)

        if not self._robots.allows(url):
            return Decision.deny(DenyReason.EXCLUDED)

        path = archive_path(url)
        if path in self.claimed_paths:
            return Decision.deny(DenyReason.DUPLICATE)

        return Decision.allow(path)
