"""Tools that let the model schedule, list and cancel deferred commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from command_agent.tools.base import Tool

if TYPE_CHECKING:
    from command_agent.scheduler import DeferredCommandScheduler

SCHEDULE_TOOL_NAME = "schedule_command"


class ScheduleCommandTool(Tool):
    """Persist a natural-language command for later execution."""

    name = SCHEDULE_TOOL_NAME
    description = (
        "Schedule a command to be executed at a future time. Use this when the user wants "
        "an action performed later, e.g. 'turn off the lights at 5pm tomorrow' or "
        "'turn on the heating in 30 minutes'. Supports up to 365 days in advance. "
        "executeAt is the LOCAL time of the home, format YYYY-MM-DDTHH:MM:SS without a "
        "timezone suffix; conversion to UTC is automatic."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The natural language command to execute later, e.g. 'turn off all lights in living room'.",
            },
            "executeAt": {
                "type": "string",
                "description": "ISO 8601 local datetime, e.g. '2026-02-08T22:00:00'.",
            },
            "description": {
                "type": "string",
                "description": "Human-readable description of what will happen, e.g. 'Turn off lights at 10pm'.",
            },
        },
        "required": ["command", "executeAt", "description"],
        "additionalProperties": False,
    }

    def __init__(self, scheduler: DeferredCommandScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        return await self._scheduler.schedule(kwargs["command"], kwargs["executeAt"], kwargs["description"])


class CancelScheduledCommandTool(Tool):
    """Cancel a pending scheduled command by id."""

    name = "cancel_scheduled_command"
    description = (
        "Cancel a previously scheduled command. Use list_scheduled_commands first to find "
        "the scheduleId when the user does not give it."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "scheduleId": {"type": "string", "description": "The id returned by schedule_command."},
        },
        "required": ["scheduleId"],
        "additionalProperties": False,
    }

    def __init__(self, scheduler: DeferredCommandScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        schedule_id: str = kwargs["scheduleId"]
        record = self._scheduler.get(schedule_id)
        await self._scheduler.cancel(schedule_id)
        label = (record.description or record.command) if record else schedule_id
        return {
            "success": True,
            "scheduleId": schedule_id,
            "command": record.command if record else None,
            "message": f"Successfully cancelled scheduled command: {label}",
        }


class ListScheduledCommandsTool(Tool):
    """List pending scheduled commands."""

    name = "list_scheduled_commands"
    description = "List the commands currently scheduled for later execution, earliest first."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, scheduler: DeferredCommandScheduler) -> None:
        self._scheduler = scheduler

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        commands = self._scheduler.list_pending()
        return {"success": True, "commands": commands, "count": len(commands)}
