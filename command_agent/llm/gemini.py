"""Gemini REST implementation of LLMProvider."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import httpx

from command_agent.config import Settings
from command_agent.errors import ProviderError
from command_agent.llm.base import LLMProvider
from command_agent.llm.retry import RetryPolicy
from command_agent.models import (
    CacheEntry,
    FinishReason,
    InlineDataPart,
    LLMRequest,
    LLMResponse,
    Part,
    Role,
    TextPart,
    ToolCallPart,
    ToolCallRequest,
    ToolResultPart,
    ToolSpec,
    Turn,
)
from command_agent.timers import Clock

_LOGGER = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.FILTERED,
    "RECITATION": FinishReason.FILTERED,
    "BLOCKLIST": FinishReason.FILTERED,
    "PROHIBITED_CONTENT": FinishReason.FILTERED,
    "SPII": FinishReason.FILTERED,
    "IMAGE_SAFETY": FinishReason.FILTERED,
    "MALFORMED_FUNCTION_CALL": FinishReason.MALFORMED_CALL,
}

# Schema keywords the function-declaration dialect rejects.
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "$schema"})


class GeminiProvider(LLMProvider):
    """LLM provider using the Gemini generateContent and cachedContents endpoints."""

    def __init__(self, settings: Settings, retry: RetryPolicy | None = None, clock: Clock | None = None) -> None:
        self._settings = settings
        self._retry = retry or RetryPolicy()
        self._clock = clock or Clock()

    async def generate(self, request: LLMRequest) -> LLMResponse:
        payload = build_generate_payload(request)
        data = await self._retry.run(
            lambda: self._post(f"/models/{request.model}:generateContent", payload),
            label="generateContent",
        )
        response = parse_generate_response(data)
        _LOGGER.info(
            "LLM response: finish_reason=%s text=%r tool_calls=%r usage=%r",
            response.finish_reason.value,
            response.text[:200],
            [tc.name for tc in response.tool_calls],
            response.usage,
        )
        return response

    async def create_cache(
        self,
        model: str,
        system_instruction: str,
        tools: list[ToolSpec],
        ttl_seconds: int,
    ) -> CacheEntry:
        payload: dict[str, Any] = {
            "model": f"models/{model}",
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "ttl": f"{ttl_seconds}s",
        }
        if tools:
            payload["tools"] = [{"functionDeclarations": [_declaration(t) for t in tools]}]
        data = await self._retry.run(lambda: self._post("/cachedContents", payload), label="cachedContents.create")
        # Expiry is computed locally; the server timestamp carries nanoseconds.
        expires_at = self._clock.now() + timedelta(seconds=ttl_seconds)
        _LOGGER.info("Created context cache %s for model %s", data.get("name"), model)
        return CacheEntry(name=data["name"], model=model, expires_at=expires_at)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        async with httpx.AsyncClient(base_url=self._settings.gemini_base_url, timeout=timeout) as client:
            try:
                response = await client.post(
                    path,
                    headers={
                        "x-goog-api-key": self._settings.gemini_api_key,
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
            except httpx.HTTPError as exc:
                raise ProviderError(f"Gemini request failed: {exc}") from exc
        if response.status_code >= 400:
            body = _safe_json(response)
            message = (body.get("error") or {}).get("message") or response.text
            raise ProviderError(
                f"Gemini API error {response.status_code}: {message}",
                status_code=response.status_code,
                body=body,
                headers=dict(response.headers),
            )
        return response.json()


def build_generate_payload(request: LLMRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {"contents": [turn_to_wire(t) for t in request.turns]}
    if request.cached_content:
        payload["cachedContent"] = request.cached_content
    if request.system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
    if request.temperature is not None:
        payload["generationConfig"] = {"temperature": request.temperature}
    if request.tools:
        payload["tools"] = [{"functionDeclarations": [_declaration(t) for t in request.tools]}]
    if request.tool_mode is not None:
        payload["toolConfig"] = {"functionCallingConfig": {"mode": request.tool_mode.value}}
    return payload


def parse_generate_response(data: dict[str, Any]) -> LLMResponse:
    usage = {k: v for k, v in (data.get("usageMetadata") or {}).items() if isinstance(v, int)}
    candidates = data.get("candidates") or []
    if not candidates:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        finish = FinishReason.FILTERED if block_reason else FinishReason.OTHER
        return LLMResponse(finish_reason=finish, usage=usage, raw=data)

    candidate = candidates[0]
    raw_reason = candidate.get("finishReason")
    finish = _FINISH_REASONS.get(raw_reason, FinishReason.OTHER) if raw_reason else FinishReason.STOP
    parts = (candidate.get("content") or {}).get("parts") or []
    if not parts:
        return LLMResponse(finish_reason=finish, usage=usage, raw=data)

    turn = Turn(role=Role.MODEL, parts=[part_from_wire(p) for p in parts])
    return LLMResponse(
        finish_reason=finish,
        text=turn.text,
        tool_calls=turn.tool_calls,
        content=turn,
        usage=usage,
        raw=data,
    )


def turn_to_wire(turn: Turn) -> dict[str, Any]:
    role = "model" if turn.role is Role.MODEL else "user"
    return {"role": role, "parts": [part_to_wire(p) for p in turn.parts]}


def part_to_wire(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        wire: dict[str, Any] = {"text": part.text}
        if part.thought:
            wire["thought"] = True
        return wire
    if isinstance(part, ToolCallPart):
        call: dict[str, Any] = {"name": part.call.name, "args": part.call.arguments}
        if part.call.call_id:
            call["id"] = part.call.call_id
        wire = {"functionCall": call}
        if part.signature:
            wire["thoughtSignature"] = part.signature
        return wire
    if isinstance(part, ToolResultPart):
        result: dict[str, Any] = {"name": part.name, "response": part.response}
        if part.call_id:
            result["id"] = part.call_id
        return {"functionResponse": result}
    return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}


def part_from_wire(wire: dict[str, Any]) -> Part:
    if "functionCall" in wire:
        call = wire["functionCall"]
        return ToolCallPart(
            call=ToolCallRequest(name=call.get("name", ""), arguments=call.get("args") or {}, call_id=call.get("id")),
            signature=wire.get("thoughtSignature"),
        )
    if "functionResponse" in wire:
        result = wire["functionResponse"]
        return ToolResultPart(name=result.get("name", ""), response=result.get("response") or {}, call_id=result.get("id"))
    if "inlineData" in wire:
        inline = wire["inlineData"]
        return InlineDataPart(mime_type=inline.get("mimeType", "application/octet-stream"), data=inline.get("data", ""))
    return TextPart(text=wire.get("text", ""), thought=bool(wire.get("thought", False)))


def _declaration(tool: ToolSpec) -> dict[str, Any]:
    declaration: dict[str, Any] = {"name": tool.name, "description": tool.description}
    if tool.input_schema.get("properties"):
        declaration["parameters"] = _clean_schema(tool.input_schema)
    return declaration


def _clean_schema(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _clean_schema(v) for k, v in schema.items() if k not in _UNSUPPORTED_SCHEMA_KEYS}
    if isinstance(schema, list):
        return [_clean_schema(v) for v in schema]
    return schema


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
