"""Prompt text for the command orchestrator."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

# Static on purpose: this text is uploaded once into the context cache.
SYSTEM_INSTRUCTION = """# Smart Home Assistant

## Your Role
You are a helpful smart home assistant that controls devices and flows of the user's home.

Core capabilities:
- Control devices (lights, thermostats, switches, etc.)
- Query device status and information
- Trigger automation flows
- Answer questions about the home state
- Schedule commands for a later time

## Guidelines

Device discovery:
- Don't guess device names. If a device is not found, use `list_devices_in_zone`, `search_devices` or `list_all_devices` to find the exact name before controlling it.
- When the user mentions a room, list the devices in that zone first.

Status queries:
- For "which lights are on?" use `get_devices_status_by_class` with deviceClass="light", adding the zone when one is named.

Errors:
- If a function call fails, read the error and try an alternative approach before giving up.

Scheduling:
- Each user message starts with a context block holding the current UTC and local time.
- When the user wants something done later, call `schedule_command` with `executeAt` in LOCAL time, format YYYY-MM-DDTHH:MM:SS, computed from that context block.
- A message marked as a scheduled execution was requested earlier; perform it now, do not schedule it again.

Response style:
- Always answer in clear natural language after executing functions, in the user's language.
- Be concise but friendly.
"""

GIVE_UP_INSTRUCTION = (
    "You have reached the maximum number of steps for this request. Do not call any more "
    "functions. Briefly apologize, say what was completed and what was not, and stop."
)

PLAIN_PROMPT_INSTRUCTION = "You are a helpful assistant. Answer concisely."

DONE_MESSAGE = "Done."


def build_context_prefix(now: datetime, timezone_name: str, locale: str) -> str:
    """Time-varying context prepended to every user turn, never cached."""

    local = now.astimezone(ZoneInfo(timezone_name))
    return (
        "[Context]\n"
        f"UTC: {now.isoformat()}\n"
        f"Local ({timezone_name}): {local.strftime('%Y-%m-%d %H:%M:%S')} ({local.strftime('%A')})\n"
        f"Timezone: {timezone_name} (UTC{_offset(local)})\n"
        f"Locale: {locale}\n"
    )


def build_replay_note(created_at: datetime | None, timezone_name: str) -> str:
    if created_at is None:
        return "[Scheduled execution: this command was scheduled earlier and is due now.]\n"
    local = created_at.astimezone(ZoneInfo(timezone_name))
    return (
        "[Scheduled execution: the user asked for this on "
        f"{local.strftime('%Y-%m-%d %H:%M')} and it is due now. Execute it and report it "
        "as done as they asked earlier.]\n"
    )


def _offset(local: datetime) -> str:
    raw = local.strftime("%z") or "+0000"
    return f"{raw[:3]}:{raw[3:]}"
