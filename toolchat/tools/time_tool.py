"""Clock tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from toolchat.tools.base import Tool, failure


class GetCurrentTimeTool(Tool):
    """Returns the current date and time in a timezone."""

    id = "get_current_time"
    name = "get_current_time"
    display_name = "Current Time"
    description = (
        "Get the current date and time. Use this when the user asks about the current time "
        "or date, or when you need today's date for context."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": 'IANA timezone name such as "Europe/London". Defaults to UTC.',
            },
        },
        "required": [],
    }

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        tz_name = kwargs.get("timezone") or "UTC"
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return failure(f"Invalid timezone: {tz_name}")

        now = datetime.now(timezone.utc).astimezone(tz)
        return {
            "success": True,
            "datetime": now.strftime("%A, %B %d, %Y %I:%M:%S %p %Z"),
            "timezone": tz_name,
            "timestamp": int(now.timestamp() * 1000),
            "iso": now.isoformat(),
        }
