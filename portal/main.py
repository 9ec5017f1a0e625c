"""
portal/main.py — FastAPI application entry point
Includes: lifespan management, request gate (CORS preflight, rate limiting,
route protection, security headers), slowapi endpoint limits, startup
validation, stale rate-limit key sweep, ping endpoint.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.clients import discord_client
from portal.clients.supabase_client import (
    SupabaseClient,
    get_supabase_client,
    validate_service_key,
    validate_service_url,
)
from portal.config import Settings, get_settings
from portal.core.errors import ConfigurationError
from portal.core.gate import RequestGate, rate_limited_response
from portal.core.logging import setup_logging
from portal.core.rate_limiter import (
    RATE_LIMITS,
    SlidingWindowRateLimiter,
    limiter,
    monotonic_ms,
)
from portal.core.routes import default_protection_table, default_rate_limit_table
from portal.core.session import SessionResolver
from portal.routers import api, auth, pages


# ──────────────────────────────────────────────────────────────────────────────
# Application Lifespan
# ──────────────────────────────────────────────────────────────────────────────

async def _sweep_rate_limits(rate_limiter: SlidingWindowRateLimiter, interval: float) -> None:
    """Periodically drop rate-limit keys whose windows have emptied. Runs off the event loop."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(rate_limiter.sweep)
        except Exception as exc:
            logger.error(f"Rate-limit sweep failed (non-fatal): {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: logging, credential validation, rate-limit sweeper.
    Shutdown: stop the sweeper, close the database client.
    """
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info("Portal starting up...")

    _validate_env(settings)

    sweeper = asyncio.create_task(
        _sweep_rate_limits(app.state.rate_limiter, settings.rate_limit_sweep_interval_seconds),
        name="rate-limit-sweeper",
    )
    logger.info("Startup complete.")
    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await _close_db_client(app)
    logger.info("Shutting down portal.")


async def _close_db_client(app: FastAPI) -> None:
    """Close the database client, unless the cached default was never built."""
    provider = app.state.db_provider
    if provider is get_supabase_client and get_supabase_client.cache_info().currsize == 0:
        return
    try:
        client = provider()
    except ConfigurationError:
        return
    await client.aclose()


def _validate_env(settings: Settings) -> None:
    """
    Fail loudly on missing or malformed service credentials.
    The app still starts; protected routes answer 503 until fixed.
    """
    problems = []
    try:
        validate_service_url(settings.supabase_url)
    except ConfigurationError as exc:
        problems.append(str(exc))
    for value, env_name in (
        (settings.supabase_anon_key, "SUPABASE_ANON_KEY"),
        (settings.supabase_service_role_key, "SUPABASE_SERVICE_ROLE_KEY"),
    ):
        try:
            validate_service_key(value, env_name)
        except ConfigurationError as exc:
            problems.append(str(exc))

    if problems:
        logger.critical(f"Invalid database configuration: {'; '.join(problems)}")
        logger.warning("App will start but protected and data routes will answer 503 until credentials are set.")
    if not settings.bot_token or not settings.guild_id:
        logger.warning("BOT_TOKEN / GUILD_ID not set; /api/members will answer 503.")


# ──────────────────────────────────────────────────────────────────────────────
# Exception handlers: generic bodies only
# ──────────────────────────────────────────────────────────────────────────────

async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


async def _slowapi_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return rate_limited_response(60)


# ──────────────────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    db_provider: Optional[Callable[[], SupabaseClient]] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    member_count_fetcher: Optional[Callable[[Settings], Awaitable[int]]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    db_provider = db_provider or get_supabase_client
    rate_limiter = rate_limiter or SlidingWindowRateLimiter(
        default_rate_limit_table(), clock=monotonic_ms
    )

    def resolver_provider() -> SessionResolver:
        return SessionResolver(db_provider(), cookie_name=settings.session_cookie_name)

    app = FastAPI(
        title="Eduvance Portal",
        description="Past papers and community notes portal API.",
        version="1.0.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db_provider = db_provider
    app.state.resolver_provider = resolver_provider
    app.state.rate_limiter = rate_limiter
    app.state.member_count_fetcher = member_count_fetcher or discord_client.fetch_member_count

    # ── Endpoint rate limits: slowapi ────────────────────────────────────────
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _slowapi_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_middleware(SlowAPIMiddleware)

    # ── Request gate: outermost user middleware ──────────────────────────────
    gate = RequestGate(
        settings=settings,
        rate_limiter=rate_limiter,
        protection=default_protection_table(),
        resolver_provider=resolver_provider,
    )
    app.state.gate = gate
    app.middleware("http")(gate)

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(api.router, prefix="/api", tags=["api"])
    app.include_router(pages.router, tags=["pages"])

    @app.get("/api/ping", tags=["health"])
    @limiter.limit(RATE_LIMITS["health"])
    async def ping(request: Request):
        return {"status": "ok", "version": "1.0.0"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("portal.main:app", host="0.0.0.0", port=app.state.settings.port)
