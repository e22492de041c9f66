"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from command_agent.models import CacheEntry, LLMRequest, LLMResponse, ToolSpec


class LLMProvider(ABC):
    """Abstract model provider used by the orchestrator."""

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate a model response."""

    @abstractmethod
    async def create_cache(
        self,
        model: str,
        system_instruction: str,
        tools: list[ToolSpec],
        ttl_seconds: int,
    ) -> CacheEntry:
        """Upload the static instruction and tool schemas as a reusable cached context."""
