"""
portal/core/session.py — Client identity and session resolution
resolve() never raises for credential or upstream problems: every failure
collapses to None (fail closed), with the distinct cause logged.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from fastapi import Request

from portal.core import logging as portal_logging
from portal.core.errors import AuthenticationFailure, UpstreamServiceError
from portal.models import CredentialSource, Session, StaffRecord

UNKNOWN_CLIENT = "unknown"
STAFF_TABLE = "staff_users"


class AuthBackend(Protocol):
    async def get_user(self, access_token: str) -> dict[str, Any]: ...

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[dict[str, str]] = None,
        order: Optional[list[str]] = None,
        single: bool = False,
    ) -> Any: ...


# ──────────────────────────────────────────────────────────────────────────────
# Request helpers
# ──────────────────────────────────────────────────────────────────────────────

def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def extract_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def extract_cookie_token(request: Request, cookie_name: str) -> Optional[str]:
    token = request.cookies.get(cookie_name)
    return token.strip() if token and token.strip() else None


# ──────────────────────────────────────────────────────────────────────────────
# Resolver
# ──────────────────────────────────────────────────────────────────────────────

class SessionResolver:
    def __init__(self, backend: AuthBackend, cookie_name: str = "sb-access-token"):
        self.backend = backend
        self.cookie_name = cookie_name

    def extract_token(self, request: Request, source: CredentialSource) -> Optional[str]:
        if source == CredentialSource.BEARER:
            return extract_bearer_token(request)
        return extract_cookie_token(request, self.cookie_name)

    async def resolve(
        self,
        request: Request,
        source: CredentialSource = CredentialSource.BEARER,
    ) -> Optional[Session]:
        token = self.extract_token(request, source)
        if token is None:
            portal_logging.log_session_resolution("no_credential", source.value)
            return None
        return await self.resolve_token(token, source)

    async def resolve_token(
        self,
        token: str,
        source: CredentialSource = CredentialSource.BEARER,
    ) -> Optional[Session]:
        try:
            user = await self.backend.get_user(token)
        except AuthenticationFailure:
            portal_logging.log_session_resolution("invalid_token", source.value)
            return None
        except UpstreamServiceError as exc:
            portal_logging.log_session_resolution("upstream_error", source.value, error=str(exc))
            return None
        except Exception as exc:
            portal_logging.log_session_resolution(
                "upstream_error", source.value, error=type(exc).__name__
            )
            return None

        user_id = str(user["id"])
        # StaffRecord lookup depends on the resolved id, so it runs after get_user.
        try:
            row = await self.backend.select(
                STAFF_TABLE,
                columns="id, username, role",
                filters={"id": f"eq.{user_id}"},
                single=True,
            )
            record = StaffRecord(**row) if row else None
        except Exception as exc:
            portal_logging.log_session_resolution(
                "upstream_error", source.value, user_id=user_id, error=type(exc).__name__
            )
            return None

        session = Session(
            user_id=user_id,
            email=user.get("email"),
            role=record.role if record else None,
            username=record.username if record else None,
        )
        portal_logging.log_session_resolution(
            "resolved" if session.is_staff else "not_staff", source.value, user_id=user_id
        )
        return session
