"""
tests/conftest.py — Shared pytest fixtures
In-memory stand-in for the database/auth service, a controllable clock, and an
app built through create_app().
"""
from __future__ import annotations

import itertools
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from portal.config import Settings
from portal.core.errors import AuthenticationFailure, DatabaseError, UpstreamServiceError
from portal.core.rate_limiter import SlidingWindowRateLimiter, limiter
from portal.core.routes import default_rate_limit_table
from portal.main import create_app

SERVICE_URL = "https://abcdefgh.supabase.co"
ANON_KEY = "eyJhbGciOiJIUzI1NiJ9.anon"
SERVICE_KEY = "eyJhbGciOiJIUzI1NiJ9.service"

STAFF_TOKEN = "token-staff"
MODERATOR_TOKEN = "token-moderator"
ADMIN_TOKEN = "token-admin"
MEMBER_TOKEN = "token-member"  # authenticated, no staff record


class FakeClock:
    """Milliseconds, advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeSupabase:
    """Implements the subset of SupabaseClient the app uses."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.passwords: dict[str, tuple[str, str]] = {}  # email -> (password, token)
        self.tables: dict[str, list[dict[str, Any]]] = {
            "staff_users": [],
            "subjects": [],
            "exam_sessions": [],
            "resources": [],
            "papers": [],
            "community_resource_requests": [],
        }
        self.fail_auth_upstream = False
        self.fail_tables: set[str] = set()
        self.signed_out: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self._ids = itertools.count(1)

    # ── seeding ──
    def add_user(self, token: str, user_id: str, email: str, role: Optional[str] = None,
                 username: Optional[str] = None, password: Optional[str] = None) -> None:
        self.users[token] = {"id": user_id, "email": email}
        if role is not None:
            self.tables["staff_users"].append(
                {"id": user_id, "username": username or email.split("@")[0], "role": role}
            )
        if password is not None:
            self.passwords[email] = (password, token)

    # ── auth ──
    async def get_user(self, access_token: str) -> dict[str, Any]:
        self.calls.append(("get_user", access_token))
        if self.fail_auth_upstream:
            raise UpstreamServiceError("get_user failed", status_code=503)
        user = self.users.get(access_token)
        if user is None:
            raise AuthenticationFailure("Invalid or expired token")
        return dict(user)

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        if self.fail_auth_upstream:
            raise UpstreamServiceError("sign_in failed", status_code=503)
        stored = self.passwords.get(email)
        if stored is None or stored[0] != password:
            raise AuthenticationFailure("Invalid credentials")
        token = stored[1]
        return {
            "access_token": token,
            "refresh_token": f"refresh-{token}",
            "expires_in": 3600,
            "token_type": "bearer",
            "user": dict(self.users[token]),
        }

    async def sign_out(self, access_token: str) -> None:
        if self.fail_auth_upstream:
            raise UpstreamServiceError("sign_out failed", status_code=503)
        self.signed_out.append(access_token)

    # ── tables ──
    def _check(self, table: str) -> None:
        if table in self.fail_tables:
            raise DatabaseError(f"{table} failed", code="XX000", status_code=500)

    @staticmethod
    def _matches(row: dict[str, Any], filters: Optional[dict[str, str]]) -> bool:
        for column, expr in (filters or {}).items():
            op, _, value = expr.partition(".")
            if op == "eq" and str(row.get(column)) != value:
                return False
            if op == "is" and value == "null" and row.get(column) is not None:
                return False
        return True

    async def select(self, table: str, columns: str = "*", filters: Optional[dict[str, str]] = None,
                     order: Optional[list[str]] = None, single: bool = False) -> Any:
        self.calls.append(("select", table))
        self._check(table)
        rows = [dict(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        for entry in reversed(order or []):
            column, _, direction = entry.partition(".")
            rows.sort(key=lambda r: r.get(column), reverse=direction == "desc")
        if single:
            return rows[0] if rows else None
        return rows

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict[str, Any]]:
        self.calls.append(("insert", table))
        self._check(table)
        if table == "papers":
            for existing in self.tables["papers"]:
                if all(existing.get(k) == row.get(k) for k in ("subject_id", "exam_session_id", "unit_code")):
                    raise DatabaseError("duplicate key", code="23505", status_code=409)
        stored = {"id": next(self._ids), **row}
        self.tables.setdefault(table, []).append(stored)
        return [dict(stored)]

    async def update(self, table: str, values: dict[str, Any], filters: dict[str, str]) -> list[dict[str, Any]]:
        self.calls.append(("update", table))
        self._check(table)
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_endpoint_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        supabase_url=SERVICE_URL,
        supabase_anon_key=ANON_KEY,
        supabase_service_role_key=SERVICE_KEY,
        bot_token="bot-token",
        guild_id="123456789012345678",
        cors_allowed_origins=["https://eduvance.au"],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(0.0)


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    db.add_user(STAFF_TOKEN, "u-staff", "staff@example.com", role="staff", password="staff-pass")
    db.add_user(MODERATOR_TOKEN, "u-mod", "mod@example.com", role="moderator")
    db.add_user(ADMIN_TOKEN, "u-admin", "admin@example.com", role="admin")
    db.add_user(MEMBER_TOKEN, "u-member", "member@example.com", password="member-pass")
    return db


@pytest.fixture
def member_counts() -> dict[str, Any]:
    return {"count": 1234, "error": None}


@pytest.fixture
def app(settings, fake_db, clock, member_counts):
    async def fetch_member_count(_settings):
        if member_counts["error"] is not None:
            raise member_counts["error"]
        return member_counts["count"]

    return create_app(
        settings=settings,
        db_provider=lambda: fake_db,
        rate_limiter=SlidingWindowRateLimiter(default_rate_limit_table(), clock=clock),
        member_count_fetcher=fetch_member_count,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
