"""
portal/clients/supabase_client.py — Hosted database / auth service client
Thin async client over the service's REST surface (auth + table access).
Credential shape is validated at construction; malformed values fail fast.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
from loguru import logger

from portal.config import Settings, get_settings
from portal.core import logging as portal_logging
from portal.core.errors import (
    AuthenticationFailure,
    ConfigurationError,
    DatabaseError,
    UpstreamServiceError,
)

SERVICE_HOST_SUFFIX = ".supabase.co"
JWT_PREFIX = "eyJ"


# ──────────────────────────────────────────────────────────────────────────────
# Credential validation
# ──────────────────────────────────────────────────────────────────────────────

def validate_service_url(url: str) -> str:
    if not url:
        raise ConfigurationError("SUPABASE_URL is not set")
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if parsed.scheme != "https" or not host.endswith(SERVICE_HOST_SUFFIX):
        raise ConfigurationError("SUPABASE_URL must be an https://<project>.supabase.co URL")
    return url.rstrip("/")


def validate_service_key(key: str, env_name: str) -> str:
    if not key:
        raise ConfigurationError(f"{env_name} is not set")
    if not key.startswith(JWT_PREFIX):
        raise ConfigurationError(f"{env_name} must be a JWT (expected prefix {JWT_PREFIX!r})")
    return key


# ──────────────────────────────────────────────────────────────────────────────
# Client
# ──────────────────────────────────────────────────────────────────────────────

class SupabaseClient:
    """
    Auth calls use the anon key as `apikey`; table access uses the service role
    key (server-side only, bypasses row-level security).
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        service_role_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = validate_service_url(url)
        self._anon_key = validate_service_key(anon_key, "SUPABASE_ANON_KEY")
        self._service_key = validate_service_key(service_role_key, "SUPABASE_SERVICE_ROLE_KEY")
        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseClient":
        return cls(
            url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            service_role_key=settings.supabase_service_role_key,
            timeout=settings.supabase_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _service_headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }
        headers.update(extra)
        return headers

    async def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            portal_logging.log_upstream_error("supabase", operation, error=type(exc).__name__)
            raise UpstreamServiceError(f"{operation}: transport error") from exc

    @staticmethod
    def _raise_for_table_error(resp: httpx.Response, operation: str) -> None:
        if resp.is_success:
            return
        code: Optional[str] = None
        message = resp.reason_phrase
        try:
            body = resp.json()
            code = body.get("code")
            message = body.get("message") or message
        except ValueError:
            pass
        portal_logging.log_upstream_error(
            "supabase", operation, status_code=resp.status_code, error=code or message
        )
        raise DatabaseError(f"{operation} failed", code=code, status_code=resp.status_code)

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def get_user(self, access_token: str) -> dict[str, Any]:
        """Resolve an access token to the user record. Raises AuthenticationFailure on a bad token."""
        resp = await self._request(
            "GET",
            "/auth/v1/user",
            "get_user",
            headers={"apikey": self._anon_key, "Authorization": f"Bearer {access_token}"},
        )
        if resp.status_code in (400, 401, 403, 404):
            raise AuthenticationFailure("Invalid or expired token")
        if not resp.is_success:
            portal_logging.log_upstream_error("supabase", "get_user", status_code=resp.status_code)
            raise UpstreamServiceError("get_user failed", status_code=resp.status_code)
        user = resp.json()
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthenticationFailure("Token did not resolve to a user")
        return user

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            "sign_in",
            params={"grant_type": "password"},
            headers={"apikey": self._anon_key},
            json={"email": email, "password": password},
        )
        if resp.status_code in (400, 401, 403):
            raise AuthenticationFailure("Invalid credentials")
        if not resp.is_success:
            portal_logging.log_upstream_error("supabase", "sign_in", status_code=resp.status_code)
            raise UpstreamServiceError("sign_in failed", status_code=resp.status_code)
        return resp.json()

    async def sign_out(self, access_token: str) -> None:
        resp = await self._request(
            "POST",
            "/auth/v1/logout",
            "sign_out",
            params={"scope": "global"},
            headers={"apikey": self._service_key, "Authorization": f"Bearer {access_token}"},
        )
        if not resp.is_success:
            portal_logging.log_upstream_error("supabase", "sign_out", status_code=resp.status_code)
            raise UpstreamServiceError("sign_out failed", status_code=resp.status_code)

    # ── Tables ────────────────────────────────────────────────────────────────

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[dict[str, str]] = None,
        order: Optional[list[str]] = None,
        single: bool = False,
    ) -> Any:
        """
        filters use REST operator syntax, e.g. {"id": "eq.42", "rejected": "is.null"}.
        order entries look like "year.desc".
        single=True returns the first row or None.
        """
        params: dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = ",".join(order)
        if single:
            params["limit"] = "1"
        resp = await self._request(
            "GET", f"/rest/v1/{table}", f"select:{table}",
            params=params, headers=self._service_headers(),
        )
        self._raise_for_table_error(resp, f"select:{table}")
        rows = resp.json() or []
        if single:
            return rows[0] if rows else None
        return rows

    async def insert(self, table: str, row: dict[str, Any]) -> list[dict[str, Any]]:
        resp = await self._request(
            "POST", f"/rest/v1/{table}", f"insert:{table}",
            json=row, headers=self._service_headers(Prefer="return=representation"),
        )
        self._raise_for_table_error(resp, f"insert:{table}")
        return resp.json() or []

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        filters: dict[str, str],
    ) -> list[dict[str, Any]]:
        resp = await self._request(
            "PATCH", f"/rest/v1/{table}", f"update:{table}",
            params=filters, json=values,
            headers=self._service_headers(Prefer="return=representation"),
        )
        self._raise_for_table_error(resp, f"update:{table}")
        return resp.json() or []


@lru_cache()
def get_supabase_client() -> SupabaseClient:
    """Cached client built from settings. Raises ConfigurationError when credentials are broken."""
    client = SupabaseClient.from_settings(get_settings())
    logger.info(f"Database client initialised for {client.url}")
    return client
