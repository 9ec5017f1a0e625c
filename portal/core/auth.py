"""
portal/core/auth.py — Authentication & Authorization
Role tiers, the single authorization decision function, and FastAPI
dependencies for staff-only API handlers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from fastapi import HTTPException, Request, status

from portal.core.errors import ConfigurationError
from portal.core.routes import PrefixTable
from portal.models import ROLE_TIERS, CredentialSource, Role, RouteProtection, Session

AUTHENTICATION_REQUIRED = "authentication required"
INSUFFICIENT_PERMISSIONS = "insufficient permissions"


def role_tier(role: Union[Role, str, None]) -> int:
    """staff=1 < moderator=2 < admin=3; None or unknown = 0."""
    if role is None:
        return 0
    if not isinstance(role, Role):
        try:
            role = Role(str(role).lower())
        except ValueError:
            return 0
    return ROLE_TIERS.get(role, 0)


# ──────────────────────────────────────────────────────────────────────────────
# Authorization decision
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Allow:
    allowed = True


@dataclass(frozen=True)
class Deny:
    reason: str
    protection: Optional[RouteProtection] = None
    allowed = False

    @property
    def needs_authentication(self) -> bool:
        return self.reason == AUTHENTICATION_REQUIRED


Decision = Union[Allow, Deny]


def authorize(
    route: str,
    session: Optional[Session],
    table: PrefixTable[RouteProtection],
) -> Decision:
    """Longest matching prefix wins; unmatched routes are public."""
    match = table.match(route)
    if match is None:
        return Allow()
    _, protection = match
    return authorize_protection(protection, session)


def authorize_protection(protection: RouteProtection, session: Optional[Session]) -> Decision:
    required = role_tier(protection.min_role)
    if required == 0:
        return Allow()
    if session is None:
        return Deny(AUTHENTICATION_REQUIRED, protection)
    if role_tier(session.role) >= required:
        return Allow()
    return Deny(INSUFFICIENT_PERMISSIONS, protection)


# ──────────────────────────────────────────────────────────────────────────────
# API dependencies: bearer token; reuse the gate's session when present
# ──────────────────────────────────────────────────────────────────────────────

async def current_session(request: Request) -> Optional[Session]:
    cached = getattr(request.state, "session", None)
    if cached is not None:
        return cached
    try:
        resolver = request.app.state.resolver_provider()
    except ConfigurationError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )
    session = await resolver.resolve(request, CredentialSource.BEARER)
    request.state.session = session
    return session


def require_role(role: Role) -> Callable:
    async def _dependency(request: Request) -> Session:
        session = await current_session(request)
        decision = authorize_protection(RouteProtection(min_role=role), session)
        if isinstance(decision, Deny):
            if decision.needs_authentication or (session is not None and not session.is_staff):
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Unauthorized - staff access required",
                )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return session

    return _dependency


require_staff = require_role(Role.STAFF)
