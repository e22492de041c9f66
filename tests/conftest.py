from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from command_agent.db import Database
from command_agent.errors import ProviderError
from command_agent.models import (
    CacheEntry,
    FinishReason,
    LLMRequest,
    LLMResponse,
    TextPart,
    ToolCallPart,
    ToolCallRequest,
    ToolSpec,
    Turn,
    Role,
)
from command_agent.tools.base import CapabilityProvider


class FixedClock:
    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class FakeTimer:
    def __init__(self, name: str, delay_seconds: float, callback: Any, interval_seconds: float | None = None) -> None:
        self.name = name
        self.delay_seconds = delay_seconds
        self.interval_seconds = interval_seconds
        self._callback = callback
        self.armed = True

    def disarm(self) -> None:
        self.armed = False

    async def fire(self) -> None:
        await self._callback()


class FakeTimerFactory:
    def __init__(self) -> None:
        self.one_shots: list[FakeTimer] = []
        self.periodics: list[FakeTimer] = []

    def one_shot(self, name: str, delay_seconds: float, callback: Any) -> FakeTimer:
        timer = FakeTimer(name, delay_seconds, callback)
        self.one_shots.append(timer)
        return timer

    def periodic(self, name: str, interval_seconds: float, callback: Any) -> FakeTimer:
        timer = FakeTimer(name, interval_seconds, callback, interval_seconds=interval_seconds)
        self.periodics.append(timer)
        return timer


class ScriptedProvider:
    """LLM provider replaying a fixed list of responses (or exceptions)."""

    def __init__(self, responses: list[LLMResponse | Exception], cache_error: Exception | None = None) -> None:
        self._responses = list(responses)
        self._cache_error = cache_error
        self.requests: list[LLMRequest] = []
        self.caches_created = 0

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def create_cache(self, model: str, system_instruction: str, tools: list[ToolSpec], ttl_seconds: int) -> CacheEntry:
        self.caches_created += 1
        if self._cache_error is not None:
            raise self._cache_error
        return CacheEntry(
            name=f"cachedContents/c{self.caches_created}",
            model=model,
            expires_at=datetime(2099, 1, 1, tzinfo=timezone.utc),
        )


def _spec(name: str, properties: dict[str, Any] | None = None, required: list[str] | None = None) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": properties or {}, "required": required or []},
    )


class FakeHome(CapabilityProvider):
    """Capability provider with a handful of device tools."""

    def __init__(self, handlers: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._handlers = handlers or {}

    async def list_tools(self) -> list[ToolSpec]:
        return [
            _spec("list_devices_in_zone", {"zoneName": {"type": "string"}}, ["zoneName"]),
            _spec(
                "control_device",
                {"deviceName": {"type": "string"}, "capability": {"type": "string"}, "value": {}},
                ["deviceName", "capability", "value"],
            ),
            _spec("get_device_image", {"deviceName": {"type": "string"}}, ["deviceName"]),
            _spec(
                "schedule_command",
                {"command": {"type": "string"}, "executeAt": {"type": "string"}, "description": {"type": "string"}},
                ["command", "executeAt", "description"],
            ),
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, arguments))
        handler = self._handlers.get(name)
        if handler is not None:
            return await handler(**arguments)
        return {"success": True}


def tool_calls(*calls: tuple[str, dict[str, Any]]) -> LLMResponse:
    requests = [ToolCallRequest(name=name, arguments=args) for name, args in calls]
    return LLMResponse(
        finish_reason=FinishReason.STOP,
        tool_calls=requests,
        content=Turn(role=Role.MODEL, parts=[ToolCallPart(call=r) for r in requests]),
    )


def text_reply(text: str, thought: str | None = None) -> LLMResponse:
    parts = [TextPart(thought, thought=True)] if thought else []
    parts.append(TextPart(text))
    return LLMResponse(finish_reason=FinishReason.STOP, text=text, content=Turn(role=Role.MODEL, parts=parts))


def quota_error(retry_delay: str | None = None) -> ProviderError:
    body: dict[str, Any] = {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}}
    if retry_delay:
        body["error"]["details"] = [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": retry_delay}]
    return ProviderError("Gemini API error 429: Quota exceeded", status_code=429, body=body)


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "agent.db")
    database.initialize()
    return database
