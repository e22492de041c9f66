"""Multi-turn function-calling loop between the model and the tools."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from command_agent.dispatcher import ToolExecutionDispatcher
from command_agent.errors import ErrorKind, ProviderError, user_message
from command_agent.history import ConversationHistoryStore
from command_agent.llm.base import LLMProvider
from command_agent.llm.context_cache import ContextCache
from command_agent.models import (
    CommandResult,
    FinishReason,
    InlineDataPart,
    LLMRequest,
    LLMResponse,
    Part,
    Role,
    TextPart,
    ToolCallRequest,
    ToolMode,
    ToolResult,
    ToolResultPart,
    ToolSpec,
    Turn,
)
from command_agent.prompts import (
    DONE_MESSAGE,
    GIVE_UP_INSTRUCTION,
    PLAIN_PROMPT_INSTRUCTION,
    SYSTEM_INSTRUCTION,
    build_context_prefix,
    build_replay_note,
)
from command_agent.timers import Clock
from command_agent.tools.schedule_tool import SCHEDULE_TOOL_NAME

LOGGER = logging.getLogger(__name__)

# Tools whose success means the user's request has actually been acted on.
ACTION_TOOLS = frozenset({"control_device", "trigger_flow", "run_action_card", SCHEDULE_TOOL_NAME})

NO_RESPONSE_MESSAGE = "No response generated."

_INCOMPLETE_FINISH_REASONS = frozenset({FinishReason.FILTERED, FinishReason.LENGTH, FinishReason.MALFORMED_CALL})
_CACHE_MISS_STATUSES = frozenset({403, 404})


@dataclass
class SessionState:
    """Everything one orchestration session mutates."""

    turns: list[Turn]
    turn_count: int = 0
    model_turns: int = 0
    schedule_id: str | None = None
    action_succeeded: bool = False
    cache_failed: bool = False


class ConversationOrchestrator:
    """Drives the model to a final answer, a give-up, or a terminal error.

    Sessions are serialized: a user command and a scheduler replay never
    interleave their turns in the shared history.
    """

    def __init__(
        self,
        llm: LLMProvider,
        dispatcher: ToolExecutionDispatcher,
        history: ConversationHistoryStore,
        model: str,
        timezone_name: str = "UTC",
        locale: str = "en",
        max_turns: int = 15,
        context_cache: ContextCache | None = None,
        request_timeout_seconds: float = 60.0,
        clock: Clock | None = None,
    ) -> None:
        self._llm = llm
        self._dispatcher = dispatcher
        self._history = history
        self._model = model
        self._timezone_name = timezone_name
        self._locale = locale
        self._max_turns = max_turns
        self._context_cache = context_cache
        self._request_timeout_seconds = request_timeout_seconds
        self._clock = clock or Clock()
        self._lock = asyncio.Lock()

    async def run(
        self,
        command: str,
        is_replay: bool = False,
        replay_created_at: datetime | None = None,
    ) -> CommandResult:
        """Handle one natural-language command and return the final answer."""

        async with self._lock:
            return await self._run_session(command, is_replay, replay_created_at)

    async def run_scheduled(
        self,
        command: str,
        created_at: datetime,
        is_pending: Callable[[], bool] | None = None,
    ) -> CommandResult | None:
        """Replay a scheduled command; returns None if it was cancelled while waiting for the session lock."""

        async with self._lock:
            if is_pending is not None and not is_pending():
                LOGGER.info("Scheduled command cancelled before its session started: %r", command)
                return None
            return await self._run_session(command, True, created_at)

    async def generate_text(self, prompt: str) -> CommandResult:
        """Answer a plain prompt without tools and remember the exchange as context."""

        return await self._plain_prompt([TextPart(prompt)], prompt)

    async def generate_text_with_image(self, prompt: str, data: bytes, mime_type: str = "image/jpeg") -> CommandResult:
        """Answer a prompt about one image; the image goes before the text."""

        LOGGER.info("Prompt with image: %r (%d bytes, %s)", prompt, len(data), mime_type)
        parts: list[Part] = [
            InlineDataPart(mime_type=mime_type, data=base64.b64encode(data).decode("ascii")),
            TextPart(prompt),
        ]
        return await self._plain_prompt(parts, f"{prompt} (about an image I was shown)")

    def clear_history(self) -> None:
        self._history.clear()
        LOGGER.info("Conversation history cleared")

    async def _run_session(
        self,
        command: str,
        is_replay: bool,
        replay_created_at: datetime | None,
    ) -> CommandResult:
        self._history.prune()
        session = SessionState(turns=self._history.snapshot())
        session.turns.append(Turn.user_text(self._annotate(command, is_replay, replay_created_at)))
        LOGGER.info("Command (replay=%s): %r, history_length=%d", is_replay, command, len(session.turns))

        try:
            result = await self._loop(session)
        except (ProviderError, TimeoutError) as exc:
            kind = exc.kind if isinstance(exc, ProviderError) else ErrorKind.SERVICE
            LOGGER.error("Model call failed at turn %d: %s", session.turn_count, exc)
            result = CommandResult(user_message(kind), False, session.schedule_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Session failed unexpectedly at turn %d", session.turn_count)
            result = CommandResult(user_message(ErrorKind.SERVICE), False, session.schedule_id)

        if session.model_turns:
            self._sync(session, result.answer)
        return result

    async def _plain_prompt(self, parts: list[Part], remembered_as: str) -> CommandResult:
        async with self._lock:
            request = LLMRequest(
                model=self._model,
                turns=[Turn(role=Role.USER, parts=parts)],
                system_instruction=PLAIN_PROMPT_INSTRUCTION,
            )
            try:
                response = await asyncio.wait_for(self._llm.generate(request), timeout=self._request_timeout_seconds)
            except (ProviderError, TimeoutError) as exc:
                kind = exc.kind if isinstance(exc, ProviderError) else ErrorKind.SERVICE
                LOGGER.error("Plain prompt failed: %s", exc)
                return CommandResult(user_message(kind), False)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Plain prompt failed unexpectedly")
                return CommandResult(user_message(ErrorKind.SERVICE), False)
            if response.finish_reason is FinishReason.FILTERED:
                return CommandResult(user_message(ErrorKind.CONTENT_FILTERED), False)
            text = response.text.strip()
            if text:
                self._history.prune()
                self._history.seed(f"Outside this conversation I was asked: {remembered_as}\nI answered: {text}")
            return CommandResult(text or NO_RESPONSE_MESSAGE, bool(text))

    async def _loop(self, session: SessionState) -> CommandResult:
        specs = await self._dispatcher.tool_specs()
        last_malformed = False

        while session.turn_count < self._max_turns:
            session.turn_count += 1
            response = await self._call_model(session, specs)
            LOGGER.info(
                "Turn %d: finish_reason=%s tool_calls=%s",
                session.turn_count,
                response.finish_reason.value,
                [tc.name for tc in response.tool_calls],
            )

            if response.finish_reason is FinishReason.FILTERED:
                return self._failure(session, ErrorKind.CONTENT_FILTERED)
            if response.finish_reason is FinishReason.LENGTH:
                return self._failure(session, ErrorKind.TRUNCATED)
            if response.finish_reason is FinishReason.MALFORMED_CALL:
                LOGGER.warning("Malformed function call at turn %d, retrying", session.turn_count)
                last_malformed = True
                continue
            last_malformed = False
            if response.finish_reason is FinishReason.OTHER:
                LOGGER.warning("Unexpected finish reason at turn %d, using content as is", session.turn_count)

            if response.content is None:
                if session.action_succeeded:
                    return CommandResult(DONE_MESSAGE, True, session.schedule_id)
                return CommandResult(NO_RESPONSE_MESSAGE, False, session.schedule_id)

            session.turns.append(response.content)
            session.model_turns += 1

            if not response.tool_calls:
                text = response.text.strip()
                LOGGER.info("Final response after %d turn(s)", session.turn_count)
                return CommandResult(text or DONE_MESSAGE, bool(text), session.schedule_id)

            results = await self._dispatcher.execute(response.tool_calls)
            session.turns.append(self._results_turn(session, response.tool_calls, results))

        if last_malformed:
            LOGGER.error("Turn budget exhausted by malformed function calls")
            return self._failure(session, ErrorKind.MALFORMED_CALL)
        return await self._give_up(session, specs)

    async def _give_up(self, session: SessionState, specs: list[ToolSpec]) -> CommandResult:
        LOGGER.warning("Max turns (%d) reached, asking the model to close the conversation", self._max_turns)
        try:
            response = await self._call_model(session, specs, closing=True)
        except (ProviderError, TimeoutError) as exc:
            LOGGER.error("Closing turn failed: %s", exc)
            response = None
        if response is not None and response.finish_reason in _INCOMPLETE_FINISH_REASONS:
            LOGGER.error("Closing turn ended with finish_reason=%s", response.finish_reason.value)
            response = None
        if response is None or response.content is None or response.tool_calls or not response.text.strip():
            self._history.clear()
            session.model_turns = 0
            return self._failure(session, ErrorKind.TURN_BUDGET)
        session.turns.append(response.content)
        session.model_turns += 1
        return CommandResult(response.text.strip(), False, session.schedule_id)

    async def _call_model(self, session: SessionState, specs: list[ToolSpec], closing: bool = False) -> LLMResponse:
        request = LLMRequest(model=self._model, turns=list(session.turns), temperature=self._temperature())
        cache = None
        if self._context_cache is not None and not closing and not session.cache_failed:
            try:
                cache = await self._context_cache.ensure(self._model)
            except ProviderError as exc:
                LOGGER.warning("Context cache unavailable, sending instruction inline: %s", exc)
                session.cache_failed = True
        if cache is not None:
            # Tool declarations live inside the cached context.
            request.cached_content = cache.name
        elif closing:
            request.system_instruction = f"{SYSTEM_INSTRUCTION}\n\n{GIVE_UP_INSTRUCTION}"
            request.tools = specs
            request.tool_mode = ToolMode.NONE
        else:
            request.system_instruction = SYSTEM_INSTRUCTION
            request.tools = specs
            request.tool_mode = ToolMode.AUTO
        try:
            return await asyncio.wait_for(self._llm.generate(request), timeout=self._request_timeout_seconds)
        except ProviderError as exc:
            if cache is None or exc.status_code not in _CACHE_MISS_STATUSES:
                raise
            # The server evicted the handle early; later sessions build a fresh one.
            LOGGER.warning("Cached context %s rejected (%s), retrying with inline instruction", cache.name, exc)
            self._context_cache.invalidate()
            session.cache_failed = True
            return await self._call_model(session, specs, closing)

    def _results_turn(
        self,
        session: SessionState,
        calls: list[ToolCallRequest],
        results: list[ToolResult],
    ) -> Turn:
        parts: list[Part] = []
        for call, result in zip(calls, results):
            parts.append(ToolResultPart(name=call.name, response=result.payload, call_id=call.call_id))
            if result.attachment is not None:
                parts.append(result.attachment)
            if not result.success:
                continue
            if call.name in ACTION_TOOLS:
                session.action_succeeded = True
            if call.name == SCHEDULE_TOOL_NAME and result.payload.get("scheduleId"):
                session.schedule_id = result.payload["scheduleId"]
                LOGGER.info("Captured schedule id %s", session.schedule_id)
        return Turn(role=Role.TOOL, parts=parts)

    def _failure(self, session: SessionState, kind: ErrorKind) -> CommandResult:
        return CommandResult(user_message(kind), False, session.schedule_id)

    def _sync(self, session: SessionState, answer: str) -> None:
        turns = session.turns
        if turns[-1].role is not Role.MODEL or turns[-1].tool_calls:
            turns.append(Turn.model_text(answer))
        self._history.replace(turns)

    def _annotate(self, command: str, is_replay: bool, replay_created_at: datetime | None) -> str:
        prefix = build_context_prefix(self._clock.now(), self._timezone_name, self._locale)
        if is_replay:
            prefix += build_replay_note(replay_created_at, self._timezone_name)
        return f"{prefix}\n{command}"

    def _temperature(self) -> float:
        # Deterministic tool calling, except for models that degrade at 0.
        return 1.0 if "gemini-3" in self._model else 0.0
