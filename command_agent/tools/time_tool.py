"""Time utility tool."""

from __future__ import annotations

from typing import Any
from zoneinfo import ZoneInfo

from command_agent.timers import Clock
from command_agent.tools.base import Tool


class GetCurrentTimeTool(Tool):
    """Returns current UTC and home-local time."""

    name = "get_current_time"
    description = "Get the current date/time in UTC and in the home's local timezone (ISO-8601)."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, timezone_name: str = "UTC", clock: Clock | None = None) -> None:
        self._timezone = ZoneInfo(timezone_name)
        self._clock = clock or Clock()

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        now = self._clock.now()
        return {
            "success": True,
            "utc_time": now.isoformat(),
            "local_time": now.astimezone(self._timezone).isoformat(),
            "timezone": self._timezone.key,
        }
