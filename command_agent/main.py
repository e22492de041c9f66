"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import timedelta

from command_agent.commands import CommandDispatcher
from command_agent.config import Settings, load_settings
from command_agent.db import Database
from command_agent.dispatcher import ToolExecutionDispatcher
from command_agent.history import ConversationHistoryStore
from command_agent.llm.context_cache import ContextCache
from command_agent.llm.gemini import GeminiProvider
from command_agent.llm.retry import RetryPolicy
from command_agent.models import ScheduleNotification
from command_agent.orchestrator import ConversationOrchestrator
from command_agent.prompts import SYSTEM_INSTRUCTION
from command_agent.scheduler import DeferredCommandScheduler
from command_agent.tools.host_api import HostCapabilityProvider
from command_agent.tools.registry import ToolRegistry
from command_agent.tools.schedule_tool import (
    CancelScheduledCommandTool,
    ListScheduledCommandsTool,
    ScheduleCommandTool,
)
from command_agent.tools.time_tool import GetCurrentTimeTool

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


def build_scheduler(settings: Settings, db: Database) -> DeferredCommandScheduler:
    return DeferredCommandScheduler(
        db=db,
        timezone_name=settings.timezone,
        precise_threshold=timedelta(hours=settings.schedule_precise_threshold_hours),
        sweep_interval=timedelta(minutes=settings.schedule_sweep_interval_minutes),
        max_horizon=timedelta(days=settings.schedule_max_days),
        past_tolerance=timedelta(seconds=settings.schedule_past_tolerance_seconds),
    )


async def build_orchestrator(
    settings: Settings,
    db: Database,
    scheduler: DeferredCommandScheduler,
) -> ConversationOrchestrator:
    retry = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_single_wait=settings.retry_max_single_wait_seconds,
        max_total_wait=settings.retry_max_total_wait_seconds,
    )
    provider = GeminiProvider(settings, retry=retry)

    tools = ToolRegistry(db)
    tools.register(GetCurrentTimeTool(settings.timezone))
    tools.register(ScheduleCommandTool(scheduler))
    tools.register(CancelScheduledCommandTool(scheduler))
    tools.register(ListScheduledCommandsTool(scheduler))
    if settings.host_api_url:
        tools.mount(
            HostCapabilityProvider(
                settings.host_api_url,
                token=settings.host_api_token,
                timeout_seconds=settings.request_timeout_seconds,
            )
        )
    else:
        LOGGER.warning("HOST_API_URL not set - only local tools are available")

    dispatcher = ToolExecutionDispatcher(tools)
    context_cache = ContextCache(
        provider,
        system_instruction=SYSTEM_INSTRUCTION,
        tools=await dispatcher.tool_specs(),
        ttl_seconds=settings.cache_ttl_seconds,
        safety_margin_seconds=settings.cache_safety_margin_seconds,
    )
    return ConversationOrchestrator(
        llm=provider,
        dispatcher=dispatcher,
        history=ConversationHistoryStore(settings.history_max_turns, db),
        model=settings.gemini_model,
        timezone_name=settings.timezone,
        locale=settings.locale,
        max_turns=settings.max_turns,
        context_cache=context_cache,
        request_timeout_seconds=settings.request_timeout_seconds,
    )


async def print_notification(notification: ScheduleNotification) -> None:
    status = "OK" if notification.success else "FAILED"
    print(f"[scheduled {notification.schedule_id} {status}] {notification.command}: {notification.answer}", flush=True)


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()

    db = Database(settings.database_path)
    db.initialize()

    scheduler = build_scheduler(settings, db)
    orchestrator = await build_orchestrator(settings, db, scheduler)
    scheduler.bind_runner(orchestrator.run_scheduled)
    scheduler.subscribe(print_notification)
    commands = CommandDispatcher(orchestrator, scheduler, db)

    await scheduler.restore()

    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            reply = await commands.dispatch(text)
            if reply is None:
                result = await orchestrator.run(text)
                reply = result.answer
                if result.schedule_id:
                    reply += f"\n(schedule id: {result.schedule_id})"
            print(reply, flush=True)
    except asyncio.CancelledError:
        raise
    finally:
        scheduler.cleanup()
        LOGGER.info("Command agent shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
