"""Tests for the sliding-window quota.  A fake clock replaces ``time.monotonic``."""

from __future__ import annotations

from site_archiver.quota import SlidingWindowQuota, identity_from


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowQuota:
    def test_allows_up_to_limit(self):
        quota = SlidingWindowQuota(limit=2, window=60, clock=_Clock())
        first = quota.consume("a")
        second = quota.consume("a")
        third = quota.consume("a")
        assert (first.allowed, first.remaining) == (True, 1)
        assert (second.allowed, second.remaining) == (True, 0)
        assert (third.allowed, third.remaining, third.limit) == (False, 0, 2)

    def test_identities_are_independent(self):
        quota = SlidingWindowQuota(limit=1, window=60, clock=_Clock())
        assert quota.consume("a").allowed
        assert quota.consume("b").allowed
        assert not quota.consume("a").allowed

    def test_window_slides(self):
        clock = _Clock()
        quota = SlidingWindowQuota(limit=1, window=60, clock=clock)
        quota.consume("a")
        clock.now += 30
        denied = quota.consume("a")
        assert not denied.allowed
        assert denied.reset_after == 30
        clock.now += 30
        assert quota.consume("a").allowed

    def test_peek_does_not_consume(self):
        quota = SlidingWindowQuota(limit=3, window=60, clock=_Clock())
        quota.consume("a")
        assert quota.peek("a").remaining == 2
        assert quota.peek("a").remaining == 2
        assert quota.peek("fresh").as_dict() == {"remaining": 3, "limit": 3}

    def test_reset(self):
        quota = SlidingWindowQuota(limit=1, window=60, clock=_Clock())
        quota.consume("a")
        quota.reset("a")
        assert quota.consume("a").allowed

    def test_expired_identities_are_forgotten(self):
        clock = _Clock()
        quota = SlidingWindowQuota(limit=2, window=60, clock=clock)
        quota.consume("a")
        quota.peek("never-seen")
        assert set(quota._hits) == {"a"}
        clock.now += 60
        assert quota.peek("a").remaining == 2
        assert quota._hits == {}


class TestIdentity:
    def test_first_forwarded_hop_wins(self):
        assert identity_from("203.0.113.9, 10.0.0.1", "10.0.0.2") == "203.0.113.9"

    def test_falls_back_to_client_host(self):
        assert identity_from(None, "10.0.0.2") == "10.0.0.2"
        assert identity_from("  ", "10.0.0.2") == "10.0.0.2"

    def test_last_resort_is_loopback(self):
        assert identity_from(None, None) == "127.0.0.1"
