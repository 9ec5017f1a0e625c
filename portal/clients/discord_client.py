"""
portal/clients/discord_client.py — Chat guild member count lookup
"""
from __future__ import annotations

from typing import Optional

import httpx

from portal.config import Settings
from portal.core import logging as portal_logging
from portal.core.errors import ConfigurationError, UpstreamServiceError
from portal.utils.validators import is_valid_guild_id


async def fetch_member_count(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Return the guild's approximate member count.
    Raises ConfigurationError when the bot token / guild id are missing or malformed,
    UpstreamServiceError on a failed or malformed upstream response.
    """
    if not settings.bot_token or not settings.guild_id:
        raise ConfigurationError("BOT_TOKEN and GUILD_ID must be set")
    if not is_valid_guild_id(settings.guild_id):
        raise ConfigurationError("GUILD_ID must be a 17-19 digit snowflake")

    url = f"{settings.discord_api_base}/guilds/{settings.guild_id}"
    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as http:
            resp = await http.get(
                url,
                params={"with_counts": "true"},
                headers={
                    "Authorization": f"Bot {settings.bot_token}",
                    "Content-Type": "application/json",
                },
            )
    except httpx.HTTPError as exc:
        portal_logging.log_upstream_error("discord", "guild_count", error=type(exc).__name__)
        raise UpstreamServiceError("guild lookup failed") from exc

    if not resp.is_success:
        portal_logging.log_upstream_error("discord", "guild_count", status_code=resp.status_code)
        raise UpstreamServiceError("guild lookup failed", status_code=resp.status_code)

    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamServiceError("guild lookup returned non-JSON") from exc

    count = data.get("approximate_member_count") if isinstance(data, dict) else None
    if not isinstance(count, int) or isinstance(count, bool):
        raise UpstreamServiceError("guild lookup returned no member count")
    return count
