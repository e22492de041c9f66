"""Tests for the @command management surface."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from command_agent.commands import CommandDispatcher, parse_command
from command_agent.errors import ScheduleNotFoundError
from command_agent.models import CommandResult


def _dispatcher(pending=None, ask_answer="Paris.", db=None):
    orchestrator = MagicMock()
    orchestrator.generate_text = AsyncMock(return_value=CommandResult(ask_answer, True))
    orchestrator.generate_text_with_image = AsyncMock(return_value=CommandResult("A red door.", True))
    scheduler = MagicMock()
    scheduler.list_pending.return_value = pending or []
    scheduler.cancel = AsyncMock(return_value=True)
    return CommandDispatcher(orchestrator, scheduler, db), orchestrator, scheduler


class TestParseCommand:
    def test_regular_text_returns_none(self):
        assert parse_command("turn on the lights") is None

    def test_at_sign_alone_returns_none(self):
        assert parse_command("@") is None

    def test_command_is_lowercased_with_args(self):
        assert parse_command("@Cancel schedule_1_abc") == ("cancel", ["schedule_1_abc"])

    def test_surrounding_whitespace_is_ignored(self):
        assert parse_command("   @help  ") == ("help", [])


class TestRouting:
    @pytest.mark.asyncio
    async def test_plain_text_falls_through(self):
        dispatcher, _, _ = _dispatcher()
        assert await dispatcher.dispatch("turn on the lights") is None

    @pytest.mark.asyncio
    async def test_unknown_command_falls_through(self):
        dispatcher, _, _ = _dispatcher()
        assert await dispatcher.dispatch("@foobar x") is None

    @pytest.mark.asyncio
    async def test_help_lists_commands(self):
        dispatcher, _, _ = _dispatcher()
        reply = await dispatcher.dispatch("@help")
        assert "@schedules" in reply
        assert "@cancel <id>" in reply


class TestSchedules:
    @pytest.mark.asyncio
    async def test_empty(self):
        dispatcher, _, _ = _dispatcher()
        assert await dispatcher.dispatch("@schedules") == "No scheduled commands."

    @pytest.mark.asyncio
    async def test_lists_pending(self):
        pending = [
            {
                "scheduleId": "schedule_1_abc",
                "command": "turn off lights",
                "description": "Lights off",
                "executeAtLocal": "2026-02-08 22:00:00",
                "isPast": False,
                "delayMinutes": 60,
                "status": "pending",
            },
            {
                "scheduleId": "schedule_2_def",
                "command": "close blinds",
                "description": "",
                "executeAtLocal": "2026-02-08 19:55:00",
                "isPast": True,
                "delayMinutes": -5,
                "status": "pending",
            },
        ]
        dispatcher, _, _ = _dispatcher(pending=pending)

        reply = await dispatcher.dispatch("@schedules")

        assert reply.startswith("2 scheduled command(s):")
        assert "- schedule_1_abc: Lights off at 2026-02-08 22:00:00 [pending]" in reply
        assert "- schedule_2_def: close blinds at 2026-02-08 19:55:00 (late by 5 min) [pending]" in reply


class TestCancel:
    @pytest.mark.asyncio
    async def test_requires_exactly_one_id(self):
        dispatcher, _, scheduler = _dispatcher()
        assert await dispatcher.dispatch("@cancel") == "Usage: @cancel <id>"
        scheduler.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancels(self):
        dispatcher, _, scheduler = _dispatcher()
        assert await dispatcher.dispatch("@cancel schedule_1_abc") == "Cancelled schedule_1_abc."
        scheduler.cancel.assert_awaited_once_with("schedule_1_abc")

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        dispatcher, _, scheduler = _dispatcher()
        scheduler.cancel.side_effect = ScheduleNotFoundError("schedule_x")
        assert await dispatcher.dispatch("@cancel schedule_x") == "Schedule schedule_x not found"


@pytest.mark.asyncio
async def test_clear_resets_history():
    dispatcher, orchestrator, _ = _dispatcher()

    assert await dispatcher.dispatch("@clear") == "Conversation history cleared."
    orchestrator.clear_history.assert_called_once_with()


class TestAsk:
    @pytest.mark.asyncio
    async def test_requires_prompt(self):
        dispatcher, orchestrator, _ = _dispatcher()
        assert await dispatcher.dispatch("@ask") == "Usage: @ask <prompt>"
        orchestrator.generate_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forwards_prompt(self):
        dispatcher, orchestrator, _ = _dispatcher()
        assert await dispatcher.dispatch("@ask capital of France?") == "Paris."
        orchestrator.generate_text.assert_awaited_once_with("capital of France?")


class TestImage:
    @pytest.mark.asyncio
    async def test_requires_path_and_prompt(self):
        dispatcher, orchestrator, _ = _dispatcher()
        assert await dispatcher.dispatch("@image photo.png") == "Usage: @image <path> <prompt>"
        orchestrator.generate_text_with_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        dispatcher, orchestrator, _ = _dispatcher()
        missing = tmp_path / "nope.png"
        assert await dispatcher.dispatch(f"@image {missing} what is this?") == f"No image file at {missing}."
        orchestrator.generate_text_with_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_non_image(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")
        dispatcher, orchestrator, _ = _dispatcher()
        assert await dispatcher.dispatch(f"@image {notes} what is this?") == "notes.txt is not an image."
        orchestrator.generate_text_with_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forwards_bytes_and_mime_type(self, tmp_path):
        photo = tmp_path / "door.png"
        photo.write_bytes(b"\x89PNG\r\n\x1a\n")
        dispatcher, orchestrator, _ = _dispatcher()

        assert await dispatcher.dispatch(f"@image {photo} what colour is the door?") == "A red door."
        orchestrator.generate_text_with_image.assert_awaited_once_with(
            "what colour is the door?", b"\x89PNG\r\n\x1a\n", "image/png"
        )

    @pytest.mark.asyncio
    async def test_unknown_extension_defaults_to_jpeg(self, tmp_path):
        snapshot = tmp_path / "camera_snapshot"
        snapshot.write_bytes(b"\xff\xd8\xff")
        dispatcher, orchestrator, _ = _dispatcher()

        await dispatcher.dispatch(f"@image {snapshot} who is at the door?")
        orchestrator.generate_text_with_image.assert_awaited_once_with("who is at the door?", b"\xff\xd8\xff", "image/jpeg")


class TestTools:
    @pytest.mark.asyncio
    async def test_without_database(self):
        dispatcher, _, _ = _dispatcher()
        assert await dispatcher.dispatch("@tools") == "Tool execution log is not available."

    @pytest.mark.asyncio
    async def test_empty_log(self, db):
        dispatcher, _, _ = _dispatcher(db=db)
        assert await dispatcher.dispatch("@tools") == "No tool executions yet."

    @pytest.mark.asyncio
    async def test_lists_most_recent_first(self, db):
        db.log_tool_execution("set_device_state", {"deviceName": "Kitchen"}, {"success": True}, True)
        db.log_tool_execution("get_device_image", {"deviceName": "Door"}, {"success": False}, False)
        dispatcher, _, _ = _dispatcher(db=db)

        reply = await dispatcher.dispatch("@tools")

        lines = reply.splitlines()
        assert lines[0] == "Recent tool executions:"
        assert lines[1].endswith('FAIL get_device_image {"deviceName": "Door"}')
        assert lines[2].endswith('OK set_device_state {"deviceName": "Kitchen"}')
