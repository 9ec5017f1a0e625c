"""
portal/routers/api.py — Public read endpoints and staff write/moderation endpoints
Public: /api/subjects, /api/exam-sessions, /api/members
Staff (bearer token): /api/resources, /api/papers, /api/community-requests
Upstream error detail is logged, never returned.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger

from portal.clients.supabase_client import SupabaseClient
from portal.config import Settings
from portal.core.auth import require_staff
from portal.core.deps import get_app_settings, get_db
from portal.core.errors import ConfigurationError, DatabaseError, UpstreamServiceError
from portal.models import (
    CommunityRequestAction,
    CommunityRequestUpdate,
    PaperCreate,
    ResourceCreate,
    Session,
)
from portal.utils.validators import is_valid_guild_id, sanitize_input, sort_units

router = APIRouter()

UNIQUE_VIOLATION = "23505"


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /api/subjects
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/subjects")
async def list_subjects(db: SupabaseClient = Depends(get_db)) -> dict[str, Any]:
    """Subjects by name; each subject's units sorted by unit number, then name."""
    try:
        rows = await db.select(
            "subjects",
            columns="id, name, code, syllabus_type, units",
            order=["name.asc"],
        )
    except UpstreamServiceError as exc:
        logger.error(f"Subjects fetch error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch subjects",
        )

    subjects = [{**row, "units": sort_units(row.get("units"))} for row in rows or []]
    return {"subjects": subjects}


# ──────────────────────────────────────────────────────────────────────────────
# GET /api/exam-sessions
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/exam-sessions")
async def list_exam_sessions(db: SupabaseClient = Depends(get_db)) -> dict[str, Any]:
    try:
        rows = await db.select(
            "exam_sessions",
            columns="id, session, year",
            order=["year.desc", "session.desc"],
        )
    except UpstreamServiceError as exc:
        logger.error(f"Exam sessions fetch error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch exam sessions",
        )
    return {"examSessions": rows or []}


# ──────────────────────────────────────────────────────────────────────────────
# GET /api/members: chat guild member count (rate limited by the gate)
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/members")
async def member_count(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> dict[str, str]:
    if not settings.bot_token or not settings.guild_id:
        logger.error("Missing chat guild API credentials")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )
    if not is_valid_guild_id(settings.guild_id):
        logger.error("Invalid guild ID format")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Invalid configuration",
        )

    try:
        count = await request.app.state.member_count_fetcher(settings)
    except ConfigurationError as exc:
        logger.error(f"Members API configuration error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )
    except UpstreamServiceError as exc:
        logger.error(f"Members API upstream error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="External service error",
        )
    return {"count": str(count)}


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/resources: staff
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/resources")
async def create_resource(
    body: ResourceCreate,
    staff: Session = Depends(require_staff),
    db: SupabaseClient = Depends(get_db),
) -> dict[str, Any]:
    body = ResourceCreate(**sanitize_input(body.model_dump()))
    if body.missing_required():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields",
        )

    try:
        rows = await db.insert("resources", {
            "title": body.title,
            "link": body.link,
            "description": body.description,
            "resource_type": body.resource_type,
            "subject_id": body.subject_id,
            "unit_chapter_name": body.unit_value,
            "contributor_email": staff.username,
            "approved": "Pending",
        })
    except UpstreamServiceError as exc:
        logger.error(f"Resource creation error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create resource",
        )

    return {
        "message": "Resource created successfully",
        "resource": rows[0] if rows else None,
    }


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/papers: staff
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/papers")
async def create_paper(
    body: PaperCreate,
    _staff: Session = Depends(require_staff),
    db: SupabaseClient = Depends(get_db),
) -> dict[str, Any]:
    if body.missing_required():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subject, Exam Session, and Unit Code are required",
        )

    try:
        rows = await db.insert("papers", body.to_row())
    except DatabaseError as exc:
        if exc.code == UNIQUE_VIOLATION:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A paper for this subject, exam session, and unit code already exists",
            )
        logger.error(f"Paper creation error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create paper",
        )
    except UpstreamServiceError as exc:
        logger.error(f"Paper creation error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create paper",
        )

    return {
        "message": "Past paper created successfully",
        "paper": rows[0] if rows else None,
    }


# ──────────────────────────────────────────────────────────────────────────────
# GET|PUT /api/community-requests: staff moderation queue
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/community-requests")
async def list_community_requests(
    _staff: Session = Depends(require_staff),
    db: SupabaseClient = Depends(get_db),
) -> dict[str, Any]:
    try:
        rows = await db.select(
            "community_resource_requests",
            filters={"approved": "eq.Unapproved", "rejected": "is.null"},
        )
    except UpstreamServiceError as exc:
        logger.error(f"Community requests fetch error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch pending requests",
        )
    return {"requests": rows or []}


@router.put("/community-requests")
async def act_on_community_request(
    body: CommunityRequestUpdate,
    staff: Session = Depends(require_staff),
    db: SupabaseClient = Depends(get_db),
) -> dict[str, str]:
    if not body.id or not body.action:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request ID and action are required",
        )

    try:
        action = CommunityRequestAction(body.action)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action",
        )

    id_filter = {"id": f"eq.{body.id}"}

    if action == CommunityRequestAction.APPROVE:
        return await _approve_request(db, id_filter, staff)

    if action == CommunityRequestAction.REJECT:
        if not body.rejection_reason:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Rejection reason is required",
            )
        try:
            await db.update(
                "community_resource_requests",
                {
                    "rejection_reason": sanitize_input(body.rejection_reason),
                    "approved": "Unapproved",
                    "rejected": True,
                },
                id_filter,
            )
        except UpstreamServiceError as exc:
            logger.error(f"Community request reject error: {exc}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to reject request",
            )
        return {"message": "Request rejected successfully"}

    try:
        await db.update(
            "community_resource_requests",
            sanitize_input(body.update_fields()),
            id_filter,
        )
    except UpstreamServiceError as exc:
        logger.error(f"Community request update error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update request",
        )
    return {"message": "Request updated successfully"}


async def _approve_request(
    db: SupabaseClient,
    id_filter: dict[str, str],
    staff: Session,
) -> dict[str, str]:
    try:
        request_row = await db.select("community_resource_requests", filters=id_filter, single=True)
    except UpstreamServiceError as exc:
        logger.error(f"Community request fetch error: {exc}")
        raise _internal_error()
    if not request_row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Request not found",
        )

    try:
        await db.update(
            "community_resource_requests",
            {
                "approved": "Pending",
                "approved_at": datetime.now(timezone.utc).isoformat(),
                "approved_by": staff.username,
            },
            id_filter,
        )
    except UpstreamServiceError as exc:
        logger.error(f"Community request approve error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to approve request",
        )

    try:
        await db.insert("resources", {
            "title": request_row.get("title"),
            "link": request_row.get("link"),
            "description": request_row.get("description"),
            "resource_type": request_row.get("resource_type"),
            "subject_id": request_row.get("subject_id"),
            "unit_chapter_name": request_row.get("unit_chapter_name"),
            "contributor_email": (
                request_row.get("contributor_name")
                or request_row.get("contributor_email")
                or "Community"
            ),
            "approved": "Pending",
        })
    except UpstreamServiceError as exc:
        logger.error(f"Resource creation from request failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create resource",
        )

    return {"message": "Request approved successfully"}
