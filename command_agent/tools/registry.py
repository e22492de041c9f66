"""Registry for safe tool registration and execution."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError, create_model

from command_agent.db import Database
from command_agent.models import ToolSpec
from command_agent.tools.base import CapabilityProvider, Tool

LOGGER = logging.getLogger(__name__)


class ToolRegistry(CapabilityProvider):
    """Explicit registry of local tools plus mounted remote providers."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._tools: dict[str, Tool] = {}
        self._providers: list[CapabilityProvider] = []
        self._routes: dict[str, CapabilityProvider] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def mount(self, provider: CapabilityProvider) -> None:
        self._providers.append(provider)

    async def list_tools(self) -> list[ToolSpec]:
        specs = [tool.spec for tool in self._tools.values()]
        for provider in self._providers:
            for spec in await provider.list_tools():
                if spec.name in self._tools:
                    LOGGER.warning("Remote tool %s shadowed by local tool", spec.name)
                    continue
                self._routes[spec.name] = provider
                specs.append(spec)
        return specs

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        tool = self._tools.get(name)
        provider = self._routes.get(name)
        if tool is None and provider is None:
            raise KeyError(f"Unknown tool: {name}")

        try:
            if tool is not None:
                result = await tool.run(**arguments)
            else:
                result = await provider.call_tool(name, arguments)
        except Exception as exc:  # noqa: BLE001
            self._log(name, arguments, {"error": str(exc)}, succeeded=False)
            raise
        self._log(name, arguments, result, succeeded=isinstance(result, dict) and result.get("success", True) is True)
        return result

    def _log(self, name: str, arguments: dict[str, Any], result: Any, succeeded: bool) -> None:
        if self._db is not None:
            self._db.log_tool_execution(name, arguments, result, succeeded=succeeded)


class ArgumentValidator:
    """Validates tool arguments against one pydantic model per tool schema."""

    def __init__(self, specs: list[ToolSpec]) -> None:
        self._models: dict[str, type[BaseModel]] = {spec.name: _model_for(spec) for spec in specs}

    def validate(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        model = self._models.get(name)
        if model is None:
            raise KeyError(f"Unknown tool: {name}")
        try:
            value = model(**arguments)
        except ValidationError as exc:
            raise ValueError(f"Invalid input for tool {name}: {exc}") from exc
        return value.model_dump(exclude_none=True)


def _model_for(spec: ToolSpec) -> type[BaseModel]:
    props = spec.input_schema.get("properties", {})
    required = set(spec.input_schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)
    return create_model(f"{_camel(spec.name)}Arguments", **fields)


def _python_type(schema_type: str | None) -> Any:
    mapping: dict[str, Any] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    if schema_type is None:
        return Any
    return mapping.get(str(schema_type).lower(), Any)


def _camel(name: str) -> str:
    return "".join(chunk.capitalize() for chunk in name.split("_") if chunk) or "Tool"
