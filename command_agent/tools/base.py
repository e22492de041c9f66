"""Tool and capability-provider contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from command_agent.models import ToolSpec


class Tool(ABC):
    """Base class for locally implemented tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.parameters_schema)

    @abstractmethod
    async def run(self, **kwargs: Any) -> dict[str, Any]:
        """Execute tool with validated arguments."""


class CapabilityProvider(ABC):
    """Something that can list and invoke tools.

    Implementations must tolerate concurrent ``call_tool`` invocations.
    """

    @abstractmethod
    async def list_tools(self) -> list[ToolSpec]:
        """Return the static declarations of every available tool."""

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Invoke one tool and return its raw result payload."""
