"""
portal/core/errors.py — Error taxonomy for the request gate and service clients
"""
from __future__ import annotations

from typing import Optional


class PortalError(Exception):
    """Base class for all portal errors."""


class ConfigurationError(PortalError):
    """Missing or malformed credential material / route tables. Fatal for the affected client."""


class AuthenticationFailure(PortalError):
    """Absent, invalid or expired credential. Recovered locally as 'no session'."""


class UpstreamServiceError(PortalError):
    """External service unreachable or erroring."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DatabaseError(UpstreamServiceError):
    """REST layer rejected a query. `code` carries the Postgres error code when present."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.code = code
