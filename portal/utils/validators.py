"""
portal/utils/validators.py — Input sanitisation and small parsing helpers
"""
from __future__ import annotations

import re
from typing import Any, Optional

GUILD_ID_PATTERN = re.compile(r"^\d{17,19}$")

_UNIT_NUMBER = re.compile(r"Unit\s*(\d+)", re.IGNORECASE)
_ANGLE_BRACKETS = re.compile(r"[<>]")
LINK_FIELD_SUFFIX = "link"


def is_link_field(key: Any) -> bool:
    return isinstance(key, str) and key.endswith(LINK_FIELD_SUFFIX)


def sanitize_input(value: Any) -> Any:
    """
    Strip angle brackets from user-supplied strings, recursing into dicts and lists.
    Dict entries whose key ends in "link" are URLs and are stored as submitted.
    Non-string scalars pass through unchanged.
    """
    if isinstance(value, str):
        return _ANGLE_BRACKETS.sub("", value).strip()
    if isinstance(value, dict):
        return {k: v if is_link_field(k) else sanitize_input(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_input(v) for v in value]
    return value


def is_valid_guild_id(guild_id: Optional[str]) -> bool:
    return bool(guild_id and GUILD_ID_PATTERN.match(guild_id))


def unit_number(unit: dict[str, Any]) -> Optional[int]:
    """'Unit 3: Mechanics' → 3. None when the label carries no number."""
    match = _UNIT_NUMBER.search(unit.get("unit") or "")
    return int(match.group(1)) if match else None


def sort_units(units: Optional[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Numbered units ascending, unnumbered last; ties broken by name."""
    def _key(unit: dict[str, Any]) -> tuple[int, float, str]:
        num = unit_number(unit)
        return (0 if num is not None else 1, num if num is not None else 0, unit.get("name") or "")

    return sorted(units or [], key=_key)
