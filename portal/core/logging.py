"""
portal/core/logging.py — loguru structured JSON logging setup
Security events (rate limiting, access denials, session resolution outcomes)
are emitted as JSON records so "no session" and "upstream error" stay
distinguishable even though clients see the same outcome.
"""
from __future__ import annotations

import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure loguru for structured JSON output to stdout.
    """
    # Remove default loguru handler
    logger.remove()

    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="{message}",
        serialize=True,
        backtrace=True,
        diagnose=False,  # never render local variables (tokens) into logs
        colorize=False,
    )


def _build_log_record(
    component: str,
    operation: str,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a base structured log record."""
    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "operation": operation,
    }
    if extra:
        record.update(extra)
    return record


# ──────────────────────────────────────────────────────────────────────────────
# Security event helpers
# ──────────────────────────────────────────────────────────────────────────────

def log_rate_limited(
    client_ip: str,
    path: str,
    prefix: str,
    max_requests: int,
    window_ms: int,
) -> None:
    record = _build_log_record("request_gate", "rate_limited", {
        "client_ip": client_ip,
        "path": path,
        "prefix": prefix,
        "max_requests": max_requests,
        "window_ms": window_ms,
    })
    logger.warning(json.dumps(record))


def log_access_denied(
    path: str,
    reason: str,
    required_role: str,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
) -> None:
    record = _build_log_record("request_gate", "access_denied", {
        "path": path,
        "reason": reason,
        "required_role": required_role,
        "user_id": user_id,
        "role": role,
    })
    logger.info(json.dumps(record))


def log_session_resolution(
    outcome: str,
    source: str,
    user_id: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """
    outcome: resolved | not_staff | no_credential | invalid_token | upstream_error
    """
    record = _build_log_record("session_resolver", "resolve", {
        "outcome": outcome,
        "source": source,
        "user_id": user_id,
        "error": error,
    })
    if outcome == "upstream_error":
        logger.error(json.dumps(record))
    else:
        logger.debug(json.dumps(record))


def log_upstream_error(
    service: str,
    operation: str,
    status_code: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    record = _build_log_record(service, operation, {
        "status_code": status_code,
        "error": error,
    })
    logger.error(json.dumps(record))


def log_rate_limit_sweep(removed: int, remaining: int) -> None:
    record = _build_log_record("rate_limiter", "sweep", {
        "removed_keys": removed,
        "remaining_keys": remaining,
    })
    logger.debug(json.dumps(record))


def log_error(
    component: str,
    operation: str,
    error: Exception,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Every unexpected error is logged with full context (server-side only)."""
    tb = traceback.format_exc()
    record = _build_log_record(component, operation, {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "stack_trace": tb[:2000] if tb else "",
        "context": context or {},
    })
    logger.error(json.dumps(record))
