"""Management commands for @-prefixed input.

Commands bypass the model's tool loop. An unrecognised @command returns
None, letting it fall through to the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

from command_agent.errors import ScheduleNotFoundError

if TYPE_CHECKING:
    from command_agent.db import Database
    from command_agent.orchestrator import ConversationOrchestrator
    from command_agent.scheduler import DeferredCommandScheduler

LOGGER = logging.getLogger(__name__)

_HELP = (
    "Commands:\n"
    "@schedules - list pending scheduled commands\n"
    "@cancel <id> - cancel a scheduled command\n"
    "@clear - clear the conversation history\n"
    "@ask <prompt> - ask a plain question without controlling devices\n"
    "@image <path> <prompt> - ask a question about an image file\n"
    "@tools - show the most recent tool executions\n"
    "Anything else is handled as a home command."
)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split an @-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid @command.
    """
    text = text.strip()
    if not text.startswith("@"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class CommandDispatcher:
    """Routes @-prefixed input to the management surface.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        scheduler: DeferredCommandScheduler,
        db: Database | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._scheduler = scheduler
        self._db = db

    async def dispatch(self, text: str) -> str | None:
        """Dispatch input to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command == "schedules":
            return self._handle_schedules()
        if command == "cancel":
            return await self._handle_cancel(args)
        if command == "clear":
            self._orchestrator.clear_history()
            return "Conversation history cleared."
        if command == "ask":
            return await self._handle_ask(args)
        if command == "image":
            return await self._handle_image(args)
        if command == "tools":
            return self._handle_tools()
        if command == "help":
            return _HELP
        return None

    def _handle_schedules(self) -> str:
        commands = self._scheduler.list_pending()
        if not commands:
            return "No scheduled commands."
        lines = []
        for item in commands:
            when = item["executeAtLocal"]
            if item["isPast"]:
                when += f" (late by {-item['delayMinutes']} min)"
            lines.append(f"- {item['scheduleId']}: {item['description'] or item['command']} at {when} [{item['status']}]")
        return f"{len(commands)} scheduled command(s):\n" + "\n".join(lines)

    async def _handle_cancel(self, args: list[str]) -> str:
        if len(args) != 1:
            return "Usage: @cancel <id>"
        try:
            await self._scheduler.cancel(args[0])
        except ScheduleNotFoundError as exc:
            return str(exc)
        return f"Cancelled {args[0]}."

    async def _handle_ask(self, args: list[str]) -> str:
        prompt = " ".join(args).strip()
        if not prompt:
            return "Usage: @ask <prompt>"
        result = await self._orchestrator.generate_text(prompt)
        return result.answer

    async def _handle_image(self, args: list[str]) -> str:
        if len(args) < 2:
            return "Usage: @image <path> <prompt>"
        path = Path(args[0]).expanduser()
        prompt = " ".join(args[1:])
        if not path.is_file():
            return f"No image file at {path}."
        mime_type, _ = mimetypes.guess_type(path.name)
        if mime_type is not None and not mime_type.startswith("image/"):
            return f"{path.name} is not an image."
        data = await asyncio.to_thread(path.read_bytes)
        LOGGER.info("Image loaded from %s: %d bytes, %s", path, len(data), mime_type or "image/jpeg")
        result = await self._orchestrator.generate_text_with_image(prompt, data, mime_type or "image/jpeg")
        return result.answer

    def _handle_tools(self) -> str:
        if self._db is None:
            return "Tool execution log is not available."
        rows = self._db.list_tool_executions()
        if not rows:
            return "No tool executions yet."
        lines = []
        for row in rows:
            status = "OK" if row["succeeded"] else "FAIL"
            lines.append(f"- {row['executed_at']} {status} {row['tool_name']} {row['arguments_json']}")
        return "Recent tool executions:\n" + "\n".join(lines)
