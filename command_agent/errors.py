"""Error taxonomy and the one place it is turned into user-facing text."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    QUOTA = "quota"
    CONTENT_FILTERED = "content_filtered"
    TRUNCATED = "truncated"
    MALFORMED_CALL = "malformed_call"
    TURN_BUDGET = "turn_budget"
    TOOL_EXECUTION = "tool_execution"
    INVALID_SCHEDULE = "invalid_schedule"
    SCHEDULE_NOT_FOUND = "schedule_not_found"
    REPLAY_FAILED = "replay_failed"
    SERVICE = "service"


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.QUOTA: "The assistant is receiving too many requests right now. Please try again later.",
    ErrorKind.CONTENT_FILTERED: "I cannot process this request due to safety guidelines.",
    ErrorKind.TRUNCATED: "The response was too long. Please try a simpler query.",
    ErrorKind.MALFORMED_CALL: "Unable to complete this request. The model had trouble processing it.",
    ErrorKind.TURN_BUDGET: "Operation partially completed. Maximum interaction limit reached.",
    ErrorKind.TOOL_EXECUTION: "A device operation failed.",
    ErrorKind.INVALID_SCHEDULE: "The requested schedule time is not valid.",
    ErrorKind.SCHEDULE_NOT_FOUND: "No scheduled command with that id exists.",
    ErrorKind.REPLAY_FAILED: "The scheduled command could not be executed.",
    ErrorKind.SERVICE: "The assistant service is unavailable. Please try again.",
}


def user_message(kind: ErrorKind) -> str:
    """Map an error kind to the text shown to the user."""

    return _USER_MESSAGES[kind]


class AgentError(Exception):
    """Base error carrying a closed kind and a structured payload."""

    def __init__(self, kind: ErrorKind, message: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.payload = payload or {}


class ProviderError(AgentError):
    """Non-success response from the language-model service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body or {}
        self.headers = headers or {}
        kind = ErrorKind.QUOTA if status_code == 429 else ErrorKind.SERVICE
        super().__init__(kind, message, {"status_code": status_code, "body": self.body})


class ScheduleError(AgentError):
    def __init__(self, message: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorKind.INVALID_SCHEDULE, message, payload)


class ScheduleNotFoundError(AgentError):
    def __init__(self, schedule_id: str) -> None:
        super().__init__(
            ErrorKind.SCHEDULE_NOT_FOUND,
            f"Schedule {schedule_id} not found",
            {"scheduleId": schedule_id},
        )
