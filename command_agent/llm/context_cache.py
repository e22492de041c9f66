"""Cache of the static instruction and tool-schema payload."""

from __future__ import annotations

import logging
from datetime import timedelta

from command_agent.llm.base import LLMProvider
from command_agent.models import CacheEntry, ToolSpec
from command_agent.timers import Clock

LOGGER = logging.getLogger(__name__)


class ContextCache:
    """Holds one cached-context handle, bound to a model, refreshed on expiry.

    Only static content goes into the cache. Current time, timezone and
    locale are prefixed to each user turn instead so that the cached payload
    never changes and stays valid for its full TTL.
    """

    def __init__(
        self,
        provider: LLMProvider,
        system_instruction: str,
        tools: list[ToolSpec],
        ttl_seconds: int = 3600,
        safety_margin_seconds: int = 300,
        clock: Clock | None = None,
    ) -> None:
        self._provider = provider
        self._system_instruction = system_instruction
        self._tools = tools
        self._ttl_seconds = ttl_seconds
        self._safety_margin = timedelta(seconds=safety_margin_seconds)
        self._clock = clock or Clock()
        self._entry: CacheEntry | None = None

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    async def ensure(self, model: str) -> CacheEntry:
        entry = self._entry
        if entry is not None and entry.model == model and entry.expires_at - self._safety_margin > self._clock.now():
            return entry
        if entry is not None:
            LOGGER.info("Refreshing context cache (model=%s, cached model=%s)", model, entry.model)
        self._entry = await self._provider.create_cache(
            model=model,
            system_instruction=self._system_instruction,
            tools=self._tools,
            ttl_seconds=self._ttl_seconds,
        )
        return self._entry

    def invalidate(self) -> None:
        self._entry = None
