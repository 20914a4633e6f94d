"""Per-identity request quota, consulted once before a run starts.

The engine only needs a yes/no answer and the remaining/limit counters;
:class:`QuotaChecker` is the seam a different backend (Redis, a hosted
rate limiter …) would plug into.  The bundled :class:`SlidingWindowQuota`
keeps timestamps in process memory, which is enough for a single server.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

from site_archiver.config import settings


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    remaining: int
    limit: int
    reset_after: float = 0.0

    def as_dict(self) -> dict:
        return {"remaining": self.remaining, "limit": self.limit}


class QuotaChecker(Protocol):
    def consume(self, identity: str) -> QuotaStatus: ...

    def peek(self, identity: str) -> QuotaStatus: ...


class SlidingWindowQuota:
    """Allow *limit* requests per identity in any rolling *window* seconds."""

    def __init__(
        self,
        limit: int | None = None,
        window: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit if limit is not None else settings.quota_limit
        self.window = window if window is not None else settings.quota_window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, identity: str, now: float) -> deque[float]:
        hits = self._hits.get(identity, deque())
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if not hits:
            self._hits.pop(identity, None)
        return hits

    def _status(self, hits: deque[float], now: float, allowed: bool) -> QuotaStatus:
        reset_after = self.window - (now - hits[0]) if hits else 0.0
        return QuotaStatus(
            allowed=allowed,
            remaining=max(self.limit - len(hits), 0),
            limit=self.limit,
            reset_after=max(reset_after, 0.0),
        )

    def consume(self, identity: str) -> QuotaStatus:
        """Record one request for *identity* if it is still under the limit."""
        with self._lock:
            now = self._clock()
            hits = self._prune(identity, now)
            if len(hits) >= self.limit:
                return self._status(hits, now, allowed=False)
            hits.append(now)
            self._hits[identity] = hits
            return self._status(hits, now, allowed=True)

    def peek(self, identity: str) -> QuotaStatus:
        """Report the current counters without consuming anything."""
        with self._lock:
            now = self._clock()
            hits = self._prune(identity, now)
            return self._status(hits, now, allowed=len(hits) < self.limit)

    def reset(self, identity: str | None = None) -> None:
        with self._lock:
            if identity is None:
                self._hits.clear()
            else:
                self._hits.pop(identity, None)


def identity_from(forwarded_for: str | None, client_host: str | None) -> str:
    """Pick the quota key: first ``X-Forwarded-For`` hop, else the peer address."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return client_host or "127.0.0.1"
