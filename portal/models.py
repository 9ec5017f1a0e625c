"""
portal/models.py — Pydantic schemas
Roles, route policies, sessions, and request/response bodies for the API.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ──────────────────────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────────────────────

class Role(str, Enum):
    PUBLIC = "public"
    STAFF = "staff"
    MODERATOR = "moderator"
    ADMIN = "admin"


# Single total order over roles. Anything not listed ranks as 0.
ROLE_TIERS: dict[Role, int] = {
    Role.PUBLIC: 0,
    Role.STAFF: 1,
    Role.MODERATOR: 2,
    Role.ADMIN: 3,
}


class Surface(str, Enum):
    PAGE = "page"
    API = "api"


class CredentialSource(str, Enum):
    BEARER = "bearer"
    COOKIE = "cookie"


class CommunityRequestAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    UPDATE = "update"


# ──────────────────────────────────────────────────────────────────────────────
# Route policies: immutable after startup
# ──────────────────────────────────────────────────────────────────────────────

class RouteLimitPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_requests: int = Field(gt=0)
    window_ms: int = Field(gt=0)

    @property
    def retry_after_seconds(self) -> int:
        return max(1, -(-self.window_ms // 1000))


class RouteProtection(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_role: Role
    surface: Surface = Surface.PAGE
    unauthenticated_redirect: str = "/staffAccess"
    forbidden_redirect: str = "/staffAccess"

    @property
    def credential_source(self) -> CredentialSource:
        return CredentialSource.BEARER if self.surface == Surface.API else CredentialSource.COOKIE


# ──────────────────────────────────────────────────────────────────────────────
# Session: exists only for the lifetime of a request
# ──────────────────────────────────────────────────────────────────────────────

class StaffRecord(BaseModel):
    id: Any
    username: Optional[str] = None
    role: Optional[str] = None


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    role: Optional[Role] = None
    username: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role is not None

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: Any) -> Optional[Role]:
        # Unknown role strings from the store rank as "no role"
        if v is None or isinstance(v, Role):
            return v
        try:
            role = Role(str(v).lower())
        except ValueError:
            return None
        return None if role == Role.PUBLIC else role


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies
# ──────────────────────────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LogoutRequest(BaseModel):
    accessToken: Optional[str] = None


class ResourceCreate(BaseModel):
    title: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    resource_type: Optional[str] = None
    subject_id: Optional[Any] = None
    unit_chapter_name: Optional[str] = None

    def missing_required(self) -> bool:
        return not (self.title and self.link and self.resource_type and self.subject_id)

    @property
    def unit_value(self) -> str:
        unit = (self.unit_chapter_name or "").strip()
        return unit or "General"


class PaperCreate(BaseModel):
    subject_id: Optional[Any] = None
    exam_session_id: Optional[Any] = None
    unit_code: Optional[str] = None
    question_paper_link: Optional[str] = None
    mark_scheme_link: Optional[str] = None
    examiner_report_link: Optional[str] = None

    def missing_required(self) -> bool:
        return not (self.subject_id and self.exam_session_id and self.unit_code)

    def to_row(self) -> dict[str, Any]:
        def _clean(link: Optional[str]) -> Optional[str]:
            link = (link or "").strip()
            return link or None

        return {
            "subject_id": self.subject_id,
            "exam_session_id": self.exam_session_id,
            "unit_code": (self.unit_code or "").strip(),
            "question_paper_link": _clean(self.question_paper_link),
            "mark_scheme_link": _clean(self.mark_scheme_link),
            "examiner_report_link": _clean(self.examiner_report_link),
        }


class CommunityRequestUpdate(BaseModel):
    """PUT body. Fields beyond id/action/rejection_reason pass through on 'update'."""
    model_config = ConfigDict(extra="allow")

    id: Optional[Any] = None
    action: Optional[str] = None
    rejection_reason: Optional[str] = None

    def update_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})
