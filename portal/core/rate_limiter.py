"""
portal/core/rate_limiter.py — Rate limiting
Two layers:
  * SlidingWindowRateLimiter — per (client, route prefix) sliding window used by
    the request gate. Storage is behind RateLimitStore so an in-process dict can
    be swapped for a networked cache.
  * slowapi `limiter` — decorator limits on individual auth endpoints.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from portal.core import logging as portal_logging
from portal.core.routes import PrefixTable
from portal.models import RouteLimitPolicy

# Single shared slowapi limiter: imported by main.py and routers
limiter = Limiter(key_func=get_remote_address)

# Per-endpoint decorator limits (slowapi syntax)
RATE_LIMITS = {
    # Credential stuffing guard
    "login": "5/minute",
    "logout": "10/minute",
    "health": "30/minute",
}


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


RateKey = tuple[str, str]


# ──────────────────────────────────────────────────────────────────────────────
# Store abstraction
# ──────────────────────────────────────────────────────────────────────────────

class RateLimitStore(ABC):
    """Timestamp sequences keyed by (client identity, route prefix)."""

    @abstractmethod
    def get(self, key: Hashable) -> list[float]:
        ...

    @abstractmethod
    def set(self, key: Hashable, timestamps: list[float]) -> None:
        ...

    @abstractmethod
    def prune(self, key: Hashable, window_start: float) -> list[float]:
        """Drop timestamps older than window_start; return what remains."""

    @abstractmethod
    def delete(self, key: Hashable) -> None:
        ...

    @abstractmethod
    def keys(self) -> Iterable[Hashable]:
        ...


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._data: dict[Hashable, list[float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> list[float]:
        with self._lock:
            return list(self._data.get(key, ()))

    def set(self, key: Hashable, timestamps: list[float]) -> None:
        with self._lock:
            self._data[key] = list(timestamps)

    def prune(self, key: Hashable, window_start: float) -> list[float]:
        with self._lock:
            kept = [ts for ts in self._data.get(key, ()) if ts >= window_start]
            self._data[key] = kept
            return list(kept)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[Hashable]:
        with self._lock:
            return list(self._data.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# ──────────────────────────────────────────────────────────────────────────────
# Sliding window limiter
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    prefix: Optional[str] = None
    policy: Optional[RouteLimitPolicy] = None

    @property
    def retry_after(self) -> int:
        return self.policy.retry_after_seconds if self.policy else 60


class SlidingWindowRateLimiter:
    """
    check_and_record: prune the key's window, deny if full (without recording
    the rejected attempt), otherwise record now. The read-prune-append sequence
    runs under one lock so two concurrent requests can't both take the last slot.
    """

    def __init__(
        self,
        policies: PrefixTable[RouteLimitPolicy],
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.policies = policies
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock
        self._lock = threading.Lock()

    def check_and_record(self, identity: str, route: str) -> RateLimitDecision:
        match = self.policies.match(route)
        if match is None:
            return RateLimitDecision(allowed=True)
        prefix, policy = match

        key: RateKey = (identity, prefix)
        with self._lock:
            now = self._clock()
            window_start = now - policy.window_ms
            timestamps = self.store.prune(key, window_start)
            if len(timestamps) >= policy.max_requests:
                return RateLimitDecision(allowed=False, prefix=prefix, policy=policy)
            timestamps.append(now)
            self.store.set(key, timestamps)
        return RateLimitDecision(allowed=True, prefix=prefix, policy=policy)

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Delete keys with no timestamps left inside their window. Returns removed count.
        The limiter lock is taken per key, so requests interleave with a long sweep.
        """
        removed = 0
        now = self._clock() if now is None else now
        for key in list(self.store.keys()):
            prefix = key[1] if isinstance(key, tuple) and len(key) == 2 else None
            policy = self.policies.get(prefix) if prefix else None
            with self._lock:
                if policy is None or not self.store.prune(key, now - policy.window_ms):
                    self.store.delete(key)
                    removed += 1
        remaining = len(list(self.store.keys()))
        portal_logging.log_rate_limit_sweep(removed, remaining)
        return removed
