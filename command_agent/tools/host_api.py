"""Capability provider backed by the host platform's device/zone/flow API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from command_agent.models import ToolSpec
from command_agent.tools.base import CapabilityProvider

LOGGER = logging.getLogger(__name__)


class HostCapabilityProvider(CapabilityProvider):
    """Proxies tool listing and invocation to the host over HTTP.

    The host serves ``GET /tools`` returning ``{"tools": [{name, description,
    inputSchema}]}`` and ``POST /tools/{name}`` taking the argument map and
    returning the tool result payload.
    """

    def __init__(self, base_url: str, token: str | None = None, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._specs: list[ToolSpec] | None = None

    async def list_tools(self) -> list[ToolSpec]:
        if self._specs is None:
            async with self._client() as client:
                response = await client.get("/tools")
                response.raise_for_status()
                data = response.json()
            self._specs = [
                ToolSpec(
                    name=item["name"],
                    description=item.get("description", ""),
                    input_schema=item.get("inputSchema") or {"type": "object", "properties": {}},
                )
                for item in data.get("tools", [])
            ]
            LOGGER.info("Loaded %d host tools", len(self._specs))
        return list(self._specs)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"/tools/{name}", json=arguments)
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            return {"success": True, "result": data}
        return data

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(self._timeout_seconds),
        )
