"""
tests/test_rate_limiter.py — Unit tests for the sliding-window rate limiter
"""
from __future__ import annotations

import threading

import pytest

from conftest import FakeClock
from portal.core.errors import ConfigurationError
from portal.core.rate_limiter import InMemoryRateLimitStore, SlidingWindowRateLimiter
from portal.core.routes import PrefixTable, default_rate_limit_table
from portal.models import RouteLimitPolicy


def _limiter(max_requests: int = 3, window_ms: int = 1000, clock: FakeClock = None):
    clock = clock or FakeClock()
    table = PrefixTable([("/api/limited", RouteLimitPolicy(max_requests=max_requests, window_ms=window_ms))])
    return SlidingWindowRateLimiter(table, clock=clock), clock


def test_max_requests_allowed_then_denied():
    limiter, clock = _limiter(max_requests=3)
    results = [limiter.check_and_record("1.1.1.1", "/api/limited").allowed for _ in range(3)]
    assert results == [True, True, True]
    assert not limiter.check_and_record("1.1.1.1", "/api/limited").allowed


def test_window_expiry_allows_again():
    limiter, clock = _limiter(max_requests=2, window_ms=1000)
    limiter.check_and_record("c", "/api/limited")
    limiter.check_and_record("c", "/api/limited")
    assert not limiter.check_and_record("c", "/api/limited").allowed
    clock.advance(1001)
    assert limiter.check_and_record("c", "/api/limited").allowed


def test_rejected_attempts_do_not_consume_slots():
    limiter, clock = _limiter(max_requests=3, window_ms=1000)
    for _ in range(10):
        limiter.check_and_record("c", "/api/limited")
    clock.advance(1001)
    allowed = [limiter.check_and_record("c", "/api/limited").allowed for _ in range(4)]
    assert allowed == [True, True, True, False]


def test_unconfigured_route_never_limited():
    limiter, _ = _limiter(max_requests=1)
    assert all(limiter.check_and_record("c", "/api/subjects").allowed for _ in range(500))


def test_clients_and_routes_are_counted_separately():
    clock = FakeClock()
    table = PrefixTable([
        ("/a", RouteLimitPolicy(max_requests=1, window_ms=1000)),
        ("/b", RouteLimitPolicy(max_requests=1, window_ms=1000)),
    ])
    limiter = SlidingWindowRateLimiter(table, clock=clock)
    assert limiter.check_and_record("x", "/a").allowed
    assert limiter.check_and_record("y", "/a").allowed
    assert limiter.check_and_record("x", "/b").allowed
    assert not limiter.check_and_record("x", "/a/sub").allowed


def test_members_scenario_thirty_per_minute():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(default_rate_limit_table(), clock=clock)
    for i in range(30):
        clock.now = i * (59999 / 29)
        assert limiter.check_and_record("1.2.3.4", "/api/members").allowed
    clock.now = 59999
    denied = limiter.check_and_record("1.2.3.4", "/api/members")
    assert not denied.allowed
    assert denied.retry_after == 60
    clock.now = 60001
    assert limiter.check_and_record("1.2.3.4", "/api/members").allowed


def test_concurrent_requests_never_exceed_limit():
    limiter, _ = _limiter(max_requests=5, window_ms=60_000)
    results: list[bool] = []
    lock = threading.Lock()

    def worker():
        allowed = limiter.check_and_record("same", "/api/limited").allowed
        with lock:
            results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(True) == 5


def test_sweep_removes_only_stale_keys():
    limiter, clock = _limiter(max_requests=5, window_ms=1000)
    limiter.check_and_record("old", "/api/limited")
    clock.advance(800)
    limiter.check_and_record("fresh", "/api/limited")
    clock.advance(300)  # "old" is now outside its window, "fresh" is not
    removed = limiter.sweep()
    assert removed == 1
    assert list(limiter.store.keys()) == [("fresh", "/api/limited")]


def test_store_prune_drops_older_entries():
    store = InMemoryRateLimitStore()
    store.set("k", [1.0, 5.0, 10.0])
    assert store.prune("k", 5.0) == [5.0, 10.0]
    assert store.get("k") == [5.0, 10.0]
    store.delete("k")
    assert store.get("k") == []


def test_duplicate_prefix_rejected():
    policy = RouteLimitPolicy(max_requests=1, window_ms=1)
    with pytest.raises(ConfigurationError):
        PrefixTable([("/x", policy), ("/x", policy)])


def test_policy_rejects_non_positive_values():
    with pytest.raises(ValueError):
        RouteLimitPolicy(max_requests=0, window_ms=1000)


def test_requests_proceed_while_sweep_walks_keys():
    served = []

    class WalkObservingStore(InMemoryRateLimitStore):
        limiter = None

        def keys(self):
            keys = super().keys()
            if self.limiter is not None and not served:
                worker = threading.Thread(
                    target=lambda: served.append(self.limiter.check_and_record("other", "/api/limited").allowed)
                )
                worker.start()
                worker.join(timeout=1)
            return keys

    clock = FakeClock()
    store = WalkObservingStore()
    table = PrefixTable([("/api/limited", RouteLimitPolicy(max_requests=5, window_ms=1000))])
    limiter = SlidingWindowRateLimiter(table, store=store, clock=clock)
    limiter.check_and_record("old", "/api/limited")
    store.limiter = limiter

    clock.advance(2000)
    assert limiter.sweep() == 1
    assert served == [True]
