"""
tests/test_lifespan.py — Startup checks, the background key sweeper, and shutdown
"""
from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace

from fastapi.testclient import TestClient
from loguru import logger

from conftest import SERVICE_URL
from portal.clients.supabase_client import SupabaseClient, get_supabase_client
from portal.main import _close_db_client, _validate_env


def _wait_for(condition, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def _capture_logs(level: str = "WARNING"):
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level=level)
    return records, handler_id


# ── Background sweep ──────────────────────────────────────────────────────────

def test_sweeper_drops_expired_keys_while_app_runs(app, settings, clock):
    settings.rate_limit_sweep_interval_seconds = 0.01
    store = app.state.rate_limiter.store

    with TestClient(app) as client:
        assert client.get("/api/members", headers={"X-Forwarded-For": "1.2.3.4"}).status_code == 200
        time.sleep(0.05)
        assert list(store.keys()) == [("1.2.3.4", "/api/members")]

        clock.advance(60_001)
        assert _wait_for(lambda: list(store.keys()) == [])


def test_sweeper_keeps_keys_inside_their_window(app, settings, clock):
    settings.rate_limit_sweep_interval_seconds = 0.01
    store = app.state.rate_limiter.store

    with TestClient(app) as client:
        client.get("/api/members", headers={"X-Forwarded-For": "1.2.3.4"})
        clock.advance(30_000)
        time.sleep(0.1)
        assert list(store.keys()) == [("1.2.3.4", "/api/members")]


# ── Startup credential check ──────────────────────────────────────────────────

def test_validate_env_logs_critical_for_malformed_key(settings):
    settings.supabase_service_role_key = "plain-text-key"
    records, handler_id = _capture_logs()
    try:
        _validate_env(settings)
    finally:
        logger.remove(handler_id)

    critical = [r for r in records if r["level"].name == "CRITICAL"]
    assert len(critical) == 1
    assert "SUPABASE_SERVICE_ROLE_KEY" in critical[0]["message"]
    assert "plain-text-key" not in critical[0]["message"]


def test_validate_env_quiet_for_good_configuration(settings):
    records, handler_id = _capture_logs()
    try:
        _validate_env(settings)
    finally:
        logger.remove(handler_id)
    assert records == []


# ── Shutdown ──────────────────────────────────────────────────────────────────

def test_shutdown_closes_database_client(app, fake_db):
    with TestClient(app):
        pass
    assert fake_db.closed


class _RecordingClient:
    url = SERVICE_URL

    def __init__(self):
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_shutdown_never_builds_an_unused_default_client(monkeypatch):
    built = []

    def from_settings(cls, settings):
        client = _RecordingClient()
        built.append(client)
        return client

    monkeypatch.setattr(SupabaseClient, "from_settings", classmethod(from_settings))
    get_supabase_client.cache_clear()
    app = SimpleNamespace(state=SimpleNamespace(db_provider=get_supabase_client))
    try:
        asyncio.run(_close_db_client(app))
        assert built == []

        get_supabase_client()
        asyncio.run(_close_db_client(app))
        assert len(built) == 1
        assert built[0].closed
    finally:
        get_supabase_client.cache_clear()
