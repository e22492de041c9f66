"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Why the model stopped producing a turn."""

    STOP = "stop"
    FILTERED = "filtered"
    LENGTH = "length"
    MALFORMED_CALL = "malformed_call"
    OTHER = "other"


class ToolMode(str, Enum):
    AUTO = "AUTO"
    NONE = "NONE"


@dataclass(slots=True)
class ToolCallRequest:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class TextPart:
    text: str
    thought: bool = False


@dataclass(slots=True)
class ToolCallPart:
    call: ToolCallRequest
    # Opaque signature some models attach to calls; it must be sent back verbatim.
    signature: str | None = None


@dataclass(slots=True)
class ToolResultPart:
    name: str
    response: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class InlineDataPart:
    """Binary attachment carried base64-encoded."""

    mime_type: str
    data: str


Part = Union[TextPart, ToolCallPart, ToolResultPart, InlineDataPart]


@dataclass(slots=True)
class Turn:
    """One role-tagged unit of conversation."""

    role: Role
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> Turn:
        return cls(role=Role.USER, parts=[TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> Turn:
        return cls(role=Role.MODEL, parts=[TextPart(text)])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart) and not p.thought)

    @property
    def tool_calls(self) -> list[ToolCallRequest]:
        return [p.call for p in self.parts if isinstance(p, ToolCallPart)]

    def is_user_text(self) -> bool:
        """True for a genuine user-authored text turn."""

        if self.role is not Role.USER or not self.parts:
            return False
        if any(isinstance(p, ToolResultPart) for p in self.parts):
            return False
        return any(isinstance(p, TextPart) and not p.thought and p.text for p in self.parts)

    def without_thoughts(self) -> Turn:
        return Turn(
            role=self.role,
            parts=[p for p in self.parts if not (isinstance(p, TextPart) and p.thought)],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [_part_to_dict(p) for p in self.parts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        return cls(role=Role(data["role"]), parts=[_part_from_dict(p) for p in data.get("parts", [])])


def _part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        data: dict[str, Any] = {"text": part.text}
        if part.thought:
            data["thought"] = True
        return data
    if isinstance(part, ToolCallPart):
        data = {"tool_call": {"name": part.call.name, "arguments": part.call.arguments, "id": part.call.call_id}}
        if part.signature:
            data["signature"] = part.signature
        return data
    if isinstance(part, ToolResultPart):
        return {"tool_result": {"name": part.name, "response": part.response, "id": part.call_id}}
    return {"inline_data": {"mime_type": part.mime_type, "data": part.data}}


def _part_from_dict(data: dict[str, Any]) -> Part:
    if "tool_call" in data:
        call = data["tool_call"]
        return ToolCallPart(
            call=ToolCallRequest(name=call["name"], arguments=call.get("arguments") or {}, call_id=call.get("id")),
            signature=data.get("signature"),
        )
    if "tool_result" in data:
        result = data["tool_result"]
        return ToolResultPart(name=result["name"], response=result.get("response") or {}, call_id=result.get("id"))
    if "inline_data" in data:
        inline = data["inline_data"]
        return InlineDataPart(mime_type=inline["mime_type"], data=inline["data"])
    return TextPart(text=data.get("text", ""), thought=bool(data.get("thought", False)))


@dataclass(slots=True)
class ToolSpec:
    """Static declaration of one capability."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(slots=True)
class ToolResult:
    """Normalized outcome of one tool call."""

    success: bool
    payload: dict[str, Any]
    attachment: InlineDataPart | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> ToolResult:
        if not isinstance(payload, dict):
            return cls(success=True, payload={"success": True, "result": payload})
        body = dict(payload)
        attachment = None
        image = body.pop("image", None)
        if isinstance(image, dict) and image.get("data"):
            attachment = InlineDataPart(
                mime_type=image.get("mimeType") or image.get("mime_type") or "image/jpeg",
                data=image["data"],
            )
        success = body.get("success", True) is True
        body.setdefault("success", success)
        return cls(success=success, payload=body, attachment=attachment)

    @classmethod
    def failure(cls, error: str, diagnostic: dict[str, Any] | None = None) -> ToolResult:
        payload: dict[str, Any] = {"success": False, "error": error}
        if diagnostic:
            payload["diagnostic"] = diagnostic
        return cls(success=False, payload=payload)


@dataclass(slots=True)
class LLMRequest:
    """Everything sent to the model for one round-trip."""

    model: str
    turns: list[Turn]
    system_instruction: str | None = None
    cached_content: str | None = None
    temperature: float | None = None
    tools: list[ToolSpec] | None = None
    tool_mode: ToolMode | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    finish_reason: FinishReason
    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    content: Turn | None = None
    usage: dict[str, int] = field(default_factory=dict)
    raw: dict[str, Any] | None = None


@dataclass(slots=True)
class CacheEntry:
    """Server-side handle to the static prompt and tool schemas."""

    name: str
    model: str
    expires_at: datetime


@dataclass(slots=True)
class CommandResult:
    answer: str
    succeeded: bool
    schedule_id: str | None = None


@dataclass(slots=True)
class ScheduledCommand:
    """Represents a persisted scheduled command."""

    id: str
    command: str
    execute_at: datetime
    description: str
    created_at: datetime
    status: str = "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "executeAt": self.execute_at.isoformat(),
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, schedule_id: str, data: dict[str, Any]) -> ScheduledCommand:
        return cls(
            id=schedule_id,
            command=data["command"],
            execute_at=datetime.fromisoformat(data["executeAt"]),
            description=data.get("description", ""),
            created_at=datetime.fromisoformat(data["createdAt"]),
            status=data.get("status", "pending"),
        )


@dataclass(slots=True)
class ScheduleNotification:
    """Emitted once per scheduler-driven execution."""

    command: str
    success: bool
    answer: str
    schedule_id: str
