"""
portal/core/deps.py — Shared FastAPI dependencies
"""
from __future__ import annotations

from fastapi import HTTPException, Request, status

from portal.clients.supabase_client import SupabaseClient
from portal.config import Settings
from portal.core.errors import ConfigurationError


def get_db(request: Request) -> SupabaseClient:
    """Database client from app state. Broken configuration → 503, never a bypass."""
    try:
        return request.app.state.db_provider()
    except ConfigurationError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
