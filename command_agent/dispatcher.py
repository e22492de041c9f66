"""Concurrent execution of the tool calls requested in one model turn."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from command_agent.errors import AgentError, ErrorKind
from command_agent.models import ToolCallRequest, ToolResult, ToolSpec
from command_agent.tools.base import CapabilityProvider
from command_agent.tools.registry import ArgumentValidator

LOGGER = logging.getLogger(__name__)


class ToolExecutionDispatcher:
    """Fans tool calls out to the capability provider and fans results back in.

    Results come back in request order. A failure in one call is converted
    into a ``success: false`` result and never affects the others.
    """

    def __init__(self, provider: CapabilityProvider) -> None:
        self._provider = provider
        self._specs: list[ToolSpec] | None = None
        self._validator: ArgumentValidator | None = None

    async def tool_specs(self) -> list[ToolSpec]:
        if self._specs is None:
            self._specs = await self._provider.list_tools()
        return list(self._specs)

    async def _get_validator(self) -> ArgumentValidator:
        if self._validator is None:
            self._validator = ArgumentValidator(await self.tool_specs())
        return self._validator

    async def execute(self, calls: list[ToolCallRequest]) -> list[ToolResult]:
        validator = await self._get_validator()
        if len(calls) > 1:
            LOGGER.info("Parallel execution: %d tool calls", len(calls))
        return list(await asyncio.gather(*(self._execute_one(validator, call) for call in calls)))

    async def _execute_one(self, validator: ArgumentValidator, call: ToolCallRequest) -> ToolResult:
        LOGGER.info("Calling %s(%s)", call.name, json.dumps(call.arguments, default=str))
        try:
            arguments = validator.validate(call.name, call.arguments)
            result = ToolResult.from_payload(await self._provider.call_tool(call.name, arguments))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("EXCEPTION %s: %s", call.name, exc)
            diagnostic: dict[str, Any] = {"type": type(exc).__name__, "kind": ErrorKind.TOOL_EXECUTION.value}
            if isinstance(exc, AgentError):
                diagnostic.update({"kind": exc.kind.value, **exc.payload})
            return ToolResult.failure(f"Function execution failed: {exc}", diagnostic)
        LOGGER.info("%s %s", "OK" if result.success else "FAIL", call.name)
        return result
