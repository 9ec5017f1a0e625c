"""
portal/core/security_headers.py — Security headers and CORS
Applied to every outbound response, including 429s, redirects and errors.
"""
from __future__ import annotations

from typing import Optional

from starlette.responses import Response

from portal.config import Settings

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: https:",
    "font-src 'self' data:",
    "connect-src 'self' https://*.supabase.co https://discord.com https://www.googleapis.com",
    "frame-ancestors 'none'",
])

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
}


def apply_security_headers(response: Response) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


# ──────────────────────────────────────────────────────────────────────────────
# CORS
# ──────────────────────────────────────────────────────────────────────────────

def is_allowed_origin(origin: Optional[str], settings: Settings) -> bool:
    return bool(origin) and origin in settings.cors_origins


def vary_on_origin(response: Response) -> None:
    """Add Origin to Vary, keeping any values already present."""
    existing = response.headers.get("Vary")
    if not existing:
        response.headers["Vary"] = "Origin"
        return
    values = [v.strip().lower() for v in existing.split(",")]
    if "origin" not in values and "*" not in values:
        response.headers["Vary"] = f"{existing}, Origin"


def apply_cors_headers(response: Response, origin: Optional[str], settings: Settings) -> Response:
    """Echo an allow-listed Origin back; anything else gets no Allow-Origin header."""
    if is_allowed_origin(origin, settings):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        vary_on_origin(response)
    return response


def preflight_response(origin: Optional[str], settings: Settings) -> Response:
    response = Response(status_code=200)
    if is_allowed_origin(origin, settings):
        response.headers["Access-Control-Allow-Origin"] = origin
        vary_on_origin(response)
    response.headers["Access-Control-Allow-Methods"] = ", ".join(settings.cors_allowed_methods)
    response.headers["Access-Control-Allow-Headers"] = ", ".join(settings.cors_allowed_headers)
    response.headers["Access-Control-Allow-Credentials"] = "true"
    return apply_security_headers(response)
