"""
portal/core/gate.py — Request gate
Runs for every inbound request, terminal at the first deny:
  preflight → rate limit → route protection → session + role → pass-through.
Every produced response gets the security headers. Every stage fails closed.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from portal.config import Settings
from portal.core import logging as portal_logging
from portal.core.auth import Deny, authorize_protection
from portal.core.errors import ConfigurationError
from portal.core.rate_limiter import SlidingWindowRateLimiter
from portal.core.routes import PrefixTable
from portal.core.security_headers import (
    apply_cors_headers,
    apply_security_headers,
    preflight_response,
)
from portal.core.session import SessionResolver, client_identity
from portal.models import RouteProtection, Session, Surface

CallNext = Callable[[Request], Awaitable[Response]]
ResolverProvider = Callable[[], SessionResolver]


def rate_limited_response(retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Rate limit exceeded",
            "message": "Too many requests, please try again later.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


def unavailable_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "Service temporarily unavailable"},
    )


def internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def denied_response(decision: Deny, protection: RouteProtection) -> Response:
    if protection.surface == Surface.PAGE:
        target = (
            protection.unauthenticated_redirect
            if decision.needs_authentication
            else protection.forbidden_redirect
        )
        return RedirectResponse(url=target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    if decision.needs_authentication:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized - staff access required"},
        )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": "Insufficient permissions"},
    )


class RequestGate:
    """HTTP middleware: `app.middleware("http")(RequestGate(...))`."""

    def __init__(
        self,
        settings: Settings,
        rate_limiter: SlidingWindowRateLimiter,
        protection: PrefixTable[RouteProtection],
        resolver_provider: ResolverProvider,
    ):
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.protection = protection
        self.resolver_provider = resolver_provider

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        origin = request.headers.get("origin")

        # 1. CORS preflight: bypasses every later stage
        if request.method == "OPTIONS":
            return preflight_response(origin, self.settings)

        response = await self._dispatch(request, call_next)
        apply_cors_headers(response, origin, self.settings)
        return apply_security_headers(response)

    async def _dispatch(self, request: Request, call_next: CallNext) -> Response:
        path = request.url.path

        # 2. Rate limit
        identity = client_identity(request)
        decision = self.rate_limiter.check_and_record(identity, path)
        if not decision.allowed:
            portal_logging.log_rate_limited(
                identity, path, decision.prefix or "",
                decision.policy.max_requests if decision.policy else 0,
                decision.policy.window_ms if decision.policy else 0,
            )
            return rate_limited_response(decision.retry_after)

        # 3./4. Protection + role
        match = self.protection.match(path)
        if match is not None:
            _, protection = match
            denied = await self._check_access(request, path, protection)
            if denied is not None:
                return denied

        # 5. Pass-through
        try:
            return await call_next(request)
        except Exception as exc:
            portal_logging.log_error("request_gate", "call_next", exc, {"path": path})
            return internal_error_response()

    async def _check_access(
        self,
        request: Request,
        path: str,
        protection: RouteProtection,
    ) -> Optional[Response]:
        session: Optional[Session] = None
        if authorize_protection(protection, None).allowed:
            return None

        try:
            resolver = self.resolver_provider()
        except ConfigurationError as exc:
            portal_logging.log_error("request_gate", "resolver_provider", exc, {"path": path})
            return unavailable_response()

        try:
            session = await resolver.resolve(request, protection.credential_source)
        except Exception as exc:
            portal_logging.log_error("request_gate", "resolve_session", exc, {"path": path})
            session = None

        decision = authorize_protection(protection, session)
        if isinstance(decision, Deny):
            portal_logging.log_access_denied(
                path,
                decision.reason,
                protection.min_role.value,
                user_id=session.user_id if session else None,
                role=session.role.value if session and session.role else None,
            )
            return denied_response(decision, protection)

        request.state.session = session
        return None
