"""
portal/routers/auth.py — Staff login / logout
Login verifies the password with the auth service, then requires a staff record.
The access token is returned in the body (API clients, bearer) and set as an
HttpOnly cookie (page routes).
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from loguru import logger

from portal.clients.supabase_client import SupabaseClient
from portal.config import Settings
from portal.core.deps import get_app_settings, get_db
from portal.core.errors import AuthenticationFailure, UpstreamServiceError
from portal.core.rate_limiter import RATE_LIMITS, limiter
from portal.core.session import STAFF_TABLE
from portal.models import LoginRequest, LogoutRequest

router = APIRouter()


@router.post("/login")
@limiter.limit(RATE_LIMITS["login"])
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: SupabaseClient = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    if not body.email or not body.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password are required",
        )

    try:
        auth = await db.sign_in_with_password(body.email, body.password)
    except AuthenticationFailure:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    except UpstreamServiceError as exc:
        logger.error(f"Login error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    user = auth.get("user") or {}
    try:
        staff = await db.select(
            STAFF_TABLE,
            columns="id, username, role",
            filters={"id": f"eq.{user.get('id')}"},
            single=True,
        )
    except UpstreamServiceError as exc:
        logger.error(f"Login staff lookup error: {exc}")
        staff = None

    if not staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied - staff only",
        )

    access_token = auth.get("access_token")
    if access_token:
        response.set_cookie(
            key=settings.session_cookie_name,
            value=access_token,
            max_age=settings.session_max_age_seconds,
            httponly=True,
            secure=settings.is_production,
            samesite="strict",
        )

    logger.info(f"Staff login: user_id={user.get('id')} role={staff.get('role')}")
    return {
        "user": {
            "id": user.get("id"),
            "email": user.get("email"),
            "username": staff.get("username"),
            "role": staff.get("role"),
        },
        "session": {
            "access_token": access_token,
            "refresh_token": auth.get("refresh_token"),
            "expires_in": auth.get("expires_in"),
            "token_type": auth.get("token_type", "bearer"),
        },
    }


@router.post("/logout")
@limiter.limit(RATE_LIMITS["logout"])
async def logout(
    request: Request,
    response: Response,
    body: LogoutRequest,
    db: SupabaseClient = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, str]:
    if not body.accessToken:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Access token required",
        )

    try:
        await db.sign_out(body.accessToken)
    except UpstreamServiceError as exc:
        logger.error(f"Logout error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Logout failed",
        )

    response.delete_cookie(settings.session_cookie_name)
    return {"message": "Logged out successfully"}
