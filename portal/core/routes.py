"""
portal/core/routes.py — Route prefix tables
Ordered (prefix, policy) pairs resolved by longest matching prefix.
Duplicate prefixes are rejected at construction.
"""
from __future__ import annotations

from typing import Generic, Iterable, Iterator, Optional, TypeVar

from portal.core.errors import ConfigurationError
from portal.models import Role, RouteLimitPolicy, RouteProtection, Surface

T = TypeVar("T")


class PrefixTable(Generic[T]):
    """Immutable prefix → policy table with longest-prefix lookup."""

    def __init__(self, entries: Iterable[tuple[str, T]]):
        seen: set[str] = set()
        ordered: list[tuple[str, T]] = []
        for prefix, policy in entries:
            if not prefix or not prefix.startswith("/"):
                raise ConfigurationError(f"Route prefix must start with '/': {prefix!r}")
            if prefix in seen:
                raise ConfigurationError(f"Duplicate route prefix: {prefix!r}")
            seen.add(prefix)
            ordered.append((prefix, policy))
        # Longest first; lookup returns the first hit
        self._entries: tuple[tuple[str, T], ...] = tuple(
            sorted(ordered, key=lambda item: len(item[0]), reverse=True)
        )

    def match(self, path: str) -> Optional[tuple[str, T]]:
        for prefix, policy in self._entries:
            if path.startswith(prefix):
                return prefix, policy
        return None

    def get(self, prefix: str) -> Optional[T]:
        for known, policy in self._entries:
            if known == prefix:
                return policy
        return None

    def __iter__(self) -> Iterator[tuple[str, T]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ──────────────────────────────────────────────────────────────────────────────
# Default tables
# ──────────────────────────────────────────────────────────────────────────────

_MINUTE_MS = 60_000

DEFAULT_RATE_LIMITS: list[tuple[str, RouteLimitPolicy]] = [
    ("/api/staff-users", RouteLimitPolicy(max_requests=5, window_ms=_MINUTE_MS)),
    ("/api/watermark", RouteLimitPolicy(max_requests=10, window_ms=_MINUTE_MS)),
    ("/api/members", RouteLimitPolicy(max_requests=30, window_ms=_MINUTE_MS)),
    ("/dashboard", RouteLimitPolicy(max_requests=20, window_ms=_MINUTE_MS)),
    ("/staffAccess", RouteLimitPolicy(max_requests=10, window_ms=_MINUTE_MS)),
]

DEFAULT_PROTECTED_ROUTES: list[tuple[str, RouteProtection]] = [
    # Page surfaces: cookie session, redirects
    ("/dashboard", RouteProtection(min_role=Role.STAFF)),
    ("/dashboard/staff", RouteProtection(min_role=Role.STAFF)),
    (
        "/dashboard/admin",
        RouteProtection(min_role=Role.ADMIN, forbidden_redirect="/dashboard/staff"),
    ),
    # API surfaces: bearer token, JSON 401/403
    ("/api/resources", RouteProtection(min_role=Role.STAFF, surface=Surface.API)),
    ("/api/papers", RouteProtection(min_role=Role.STAFF, surface=Surface.API)),
    ("/api/community-requests", RouteProtection(min_role=Role.STAFF, surface=Surface.API)),
    ("/api/watermark", RouteProtection(min_role=Role.STAFF, surface=Surface.API)),
    ("/api/staff-users", RouteProtection(min_role=Role.ADMIN, surface=Surface.API)),
]


def default_rate_limit_table() -> PrefixTable[RouteLimitPolicy]:
    return PrefixTable(DEFAULT_RATE_LIMITS)


def default_protection_table() -> PrefixTable[RouteProtection]:
    return PrefixTable(DEFAULT_PROTECTED_ROUTES)
