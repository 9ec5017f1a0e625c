"""
portal/config.py — Pydantic BaseSettings configuration
Database service credentials, CORS allow-list, session cookie, rate-limit sweep.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION_ORIGINS = ["https://eduvance.au", "https://www.eduvance.au"]
DEVELOPMENT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000

    # ── Database / auth service ───────────────────────────────────────────────
    # Empty defaults keep the app importable; the client validates shape on build.
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    supabase_timeout_seconds: float = 10.0

    # ── Chat guild member count ───────────────────────────────────────────────
    bot_token: str = ""
    guild_id: str = ""
    discord_api_base: str = "https://discord.com/api/v10"

    # ── Sessions ──────────────────────────────────────────────────────────────
    session_cookie_name: str = "sb-access-token"
    session_max_age_seconds: int = 24 * 60 * 60

    # ── CORS ──────────────────────────────────────────────────────────────────
    # Empty → derived from environment (see cors_origins)
    cors_allowed_origins: list[str] = []
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization", "X-Requested-With"]

    # ── Rate limiting ─────────────────────────────────────────────────────────
    rate_limit_sweep_interval_seconds: float = 300

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origins(self) -> list[str]:
        if self.cors_allowed_origins:
            return list(self.cors_allowed_origins)
        return list(PRODUCTION_ORIGINS if self.is_production else DEVELOPMENT_ORIGINS)


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings instance. Use this everywhere."""
    return Settings()
