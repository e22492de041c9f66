"""Hybrid scheduler for deferred natural-language commands.

Commands due within ``precise_threshold`` get their own one-shot timer;
later ones are picked up by a periodic sweep. Both paths end in
``execute()``, which replays the command through the orchestrator and then
removes the persisted record whatever the outcome.
"""

from __future__ import annotations

import functools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from command_agent.db import SCHEDULED_COMMANDS_KEY, Database
from command_agent.errors import ErrorKind, ScheduleError, ScheduleNotFoundError, user_message
from command_agent.models import CommandResult, ScheduledCommand, ScheduleNotification
from command_agent.timers import AsyncioTimerFactory, CancellableTask, Clock

LOGGER = logging.getLogger(__name__)

# Called with (command, created_at, is_pending); returns None when the command was cancelled before it ran.
CommandRunner = Callable[[str, datetime, Callable[[], bool]], Awaitable[CommandResult | None]]
NotificationSink = Callable[[ScheduleNotification], Awaitable[None]]


@dataclass
class SchedulerState:
    """In-memory timer handles; the persisted map is the source of truth."""

    timers: dict[str, CancellableTask] = field(default_factory=dict)
    sweep: CancellableTask | None = None
    in_flight: set[str] = field(default_factory=set)


class DeferredCommandScheduler:
    """Persists, arms, restores, executes and cancels scheduled commands."""

    def __init__(
        self,
        db: Database,
        timezone_name: str = "UTC",
        runner: CommandRunner | None = None,
        clock: Clock | None = None,
        timers: AsyncioTimerFactory | None = None,
        precise_threshold: timedelta = timedelta(hours=24),
        sweep_interval: timedelta = timedelta(minutes=10),
        max_horizon: timedelta = timedelta(days=365),
        past_tolerance: timedelta = timedelta(seconds=60),
    ) -> None:
        self._db = db
        self._timezone = ZoneInfo(timezone_name)
        self._runner = runner
        self._clock = clock or Clock()
        self._timers = timers or AsyncioTimerFactory()
        self._precise_threshold = precise_threshold
        self._sweep_interval = sweep_interval
        self._max_horizon = max_horizon
        self._past_tolerance = past_tolerance
        self._subscribers: list[NotificationSink] = []
        self._state = SchedulerState()

    def bind_runner(self, runner: CommandRunner) -> None:
        self._runner = runner

    def subscribe(self, sink: NotificationSink) -> None:
        self._subscribers.append(sink)

    @property
    def sweep_running(self) -> bool:
        return self._state.sweep is not None and self._state.sweep.armed

    async def schedule(self, command: str, execute_at_local: str, description: str) -> dict[str, Any]:
        """Persist a command for a local wall-clock time and arm its execution.

        Raises:
            ScheduleError: unparseable time, too far in the past or beyond the horizon.
        """
        execute_at = self._to_utc(execute_at_local)
        now = self._clock.now()
        delay = execute_at - now
        LOGGER.info(
            "Schedule request: local=%s timezone=%s utc=%s now=%s",
            execute_at_local,
            self._timezone.key,
            execute_at.isoformat(),
            now.isoformat(),
        )

        if delay < -self._past_tolerance:
            raise ScheduleError(
                "Scheduled time is too far in the past",
                {
                    "requestedTime": execute_at_local,
                    "currentTime": _iso_z(now),
                    "delaySeconds": round(delay.total_seconds()),
                },
            )
        if delay > self._max_horizon:
            max_days = self._max_horizon.days
            raise ScheduleError(
                f"Cannot schedule commands more than {max_days} days in the future",
                {"requestedDelayDays": round(delay.total_seconds() / 86400), "maxDelayDays": max_days},
            )

        schedule_id = f"schedule_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        record = ScheduledCommand(
            id=schedule_id,
            command=command,
            execute_at=execute_at,
            description=description,
            created_at=now,
        )
        records = self._read()
        records[schedule_id] = record.to_dict()
        self._write(records)

        actual_delay = max(delay, timedelta(0))
        if actual_delay <= self._precise_threshold:
            LOGGER.info("Using one-shot timer for %s (%ds)", schedule_id, actual_delay.total_seconds())
            self._arm_timer(schedule_id, actual_delay)
        else:
            LOGGER.info("Using periodic sweep for %s (%.1f days)", schedule_id, actual_delay.total_seconds() / 86400)
            self._ensure_sweep()

        delay_seconds = delay.total_seconds()
        return {
            "success": True,
            "scheduleId": schedule_id,
            "command": command,
            "executeAt": _iso_z(execute_at),
            "description": description,
            "delayMinutes": round(delay_seconds / 60),
            "delayDays": round(delay_seconds / 86400, 1),
            "message": f"Command scheduled successfully. It will run in {_describe_delay(actual_delay)}.",
        }

    async def cancel(self, schedule_id: str) -> bool:
        """Disarm and delete a pending command.

        Raises:
            ScheduleNotFoundError: the id is unknown (already executed or never existed).
        """
        records = self._read()
        if schedule_id not in records:
            raise ScheduleNotFoundError(schedule_id)
        timer = self._state.timers.pop(schedule_id, None)
        if timer is not None:
            timer.disarm()
            LOGGER.info("Disarmed timer for %s", schedule_id)
        del records[schedule_id]
        self._write(records)
        LOGGER.info("Cancelled and removed %s", schedule_id)
        return True

    def get(self, schedule_id: str) -> ScheduledCommand | None:
        data = self._read().get(schedule_id)
        return ScheduledCommand.from_dict(schedule_id, data) if data else None

    async def restore(self) -> None:
        """Re-arm persisted commands after a restart; run at startup before new requests."""

        records = self._read()
        now = self._clock.now()
        stale_after = self._precise_threshold + self._sweep_interval
        short = long = past_due = 0
        expired: list[str] = []

        for schedule_id, data in records.items():
            if data.get("status") != "pending":
                continue
            try:
                record = ScheduledCommand.from_dict(schedule_id, data)
            except (KeyError, ValueError, TypeError):
                LOGGER.warning("Deleting unreadable scheduled command %s", schedule_id, exc_info=True)
                expired.append(schedule_id)
                continue

            delay = record.execute_at - now
            if delay > timedelta(0):
                if delay <= self._precise_threshold:
                    LOGGER.info("Restoring %s with one-shot timer (in %d minutes)", schedule_id, delay.total_seconds() // 60)
                    self._arm_timer(schedule_id, delay)
                    short += 1
                else:
                    LOGGER.info("Restoring %s via sweep (in %d hours)", schedule_id, delay.total_seconds() // 3600)
                    long += 1
            elif -delay <= stale_after:
                LOGGER.info("Past due: %s (%d minutes late, executing now)", schedule_id, -delay.total_seconds() // 60)
                past_due += 1
            else:
                LOGGER.info("Deleting expired %s (%d days late)", schedule_id, -delay.total_seconds() // 86400)
                expired.append(schedule_id)

        if expired:
            for schedule_id in expired:
                del records[schedule_id]
            self._write(records)
        if long:
            self._ensure_sweep()

        LOGGER.info(
            "Restored %d short (timer), %d long (sweep), %d past-due, %d expired (deleted)",
            short,
            long,
            past_due,
            len(expired),
        )
        if past_due:
            await self.run_due()

    def cleanup(self) -> None:
        """Disarm the sweep and every timer; used at shutdown."""

        if self._state.sweep is not None:
            self._state.sweep.disarm()
            self._state.sweep = None
            LOGGER.info("Periodic sweep stopped")
        if self._state.timers:
            LOGGER.info("Clearing %d active timers", len(self._state.timers))
            for timer in self._state.timers.values():
                timer.disarm()
            self._state.timers.clear()

    async def run_due(self) -> None:
        """Execute every pending command whose time has come."""

        now = self._clock.now()
        for schedule_id, data in list(self._read().items()):
            if data.get("status") != "pending" or schedule_id in self._state.timers:
                continue
            if now >= datetime.fromisoformat(data["executeAt"]):
                LOGGER.info("Sweep executing due command %s", schedule_id)
                await self.execute(schedule_id)

    async def execute(self, schedule_id: str) -> None:
        """Replay a scheduled command, then delete it and notify subscribers."""

        self._state.timers.pop(schedule_id, None)
        if schedule_id in self._state.in_flight:
            return
        data = self._read().get(schedule_id)
        if data is None:
            LOGGER.info("Scheduled command %s already executed or cancelled", schedule_id)
            return

        self._state.in_flight.add(schedule_id)
        command = data.get("command", "")
        result: CommandResult | None = None
        try:
            if self._runner is None:
                raise RuntimeError("No command runner bound to the scheduler")
            created_at = datetime.fromisoformat(data["createdAt"])
            result = await self._runner(command, created_at, functools.partial(self._is_pending, schedule_id))
            if result is None:
                LOGGER.info("Scheduled command %s was cancelled while waiting to run", schedule_id)
                return
            success, answer = result.succeeded, result.answer
        except Exception:  # noqa: BLE001
            LOGGER.exception("Scheduled command %s failed", schedule_id)
            success, answer = False, user_message(ErrorKind.REPLAY_FAILED)
        finally:
            self._remove(schedule_id)
            self._state.in_flight.discard(schedule_id)

        LOGGER.info("Completed %s - success=%s", schedule_id, success)
        notification = ScheduleNotification(command=command, success=success, answer=answer, schedule_id=schedule_id)
        for sink in self._subscribers:
            try:
                await sink(notification)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Notification sink failed for %s", schedule_id)

    def list_pending(self) -> list[dict[str, Any]]:
        """Pending commands for the management surface, earliest first."""

        now = self._clock.now()
        views = []
        for schedule_id, data in self._read().items():
            try:
                record = ScheduledCommand.from_dict(schedule_id, data)
            except (KeyError, ValueError, TypeError):
                LOGGER.warning("Skipping unreadable scheduled command %s", schedule_id, exc_info=True)
                continue
            delay = record.execute_at - now
            views.append(
                {
                    "scheduleId": schedule_id,
                    "command": record.command,
                    "description": record.description,
                    "executeAt": _iso_z(record.execute_at),
                    "executeAtLocal": record.execute_at.astimezone(self._timezone).strftime("%Y-%m-%d %H:%M:%S"),
                    "createdAt": _iso_z(record.created_at),
                    "status": record.status,
                    "trigger": "timer" if schedule_id in self._state.timers else "sweep",
                    "isPast": delay < timedelta(0),
                    "delayMinutes": round(delay.total_seconds() / 60),
                }
            )
        return sorted(views, key=lambda view: view["executeAt"])

    def _to_utc(self, value: str) -> datetime:
        if not value or not isinstance(value, str):
            raise ScheduleError(f"Invalid datetime format. Received: {value!r}")
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ScheduleError(
                "Invalid datetime format. Use ISO 8601 format (e.g., 2026-02-08T22:00:00)",
                {"received": value},
            ) from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self._timezone)
        return parsed.astimezone(timezone.utc)

    def _arm_timer(self, schedule_id: str, delay: timedelta) -> None:
        previous = self._state.timers.pop(schedule_id, None)
        if previous is not None:
            previous.disarm()
        self._state.timers[schedule_id] = self._timers.one_shot(
            f"schedule-{schedule_id}",
            delay.total_seconds(),
            functools.partial(self.execute, schedule_id),
        )

    def _ensure_sweep(self) -> None:
        if self.sweep_running:
            return
        self._state.sweep = self._timers.periodic(
            "schedule-sweep",
            self._sweep_interval.total_seconds(),
            self.run_due,
        )
        LOGGER.info("Periodic sweep started (every %d minutes)", self._sweep_interval.total_seconds() // 60)

    def _is_pending(self, schedule_id: str) -> bool:
        return schedule_id in self._read()

    def _read(self) -> dict[str, dict[str, Any]]:
        return dict(self._db.get_setting(SCHEDULED_COMMANDS_KEY, {}) or {})

    def _write(self, records: dict[str, dict[str, Any]]) -> None:
        self._db.set_setting(SCHEDULED_COMMANDS_KEY, records)

    def _remove(self, schedule_id: str) -> None:
        records = self._read()
        if records.pop(schedule_id, None) is not None:
            self._write(records)


def _iso_z(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _describe_delay(delay: timedelta) -> str:
    seconds = delay.total_seconds()
    minutes = round(seconds / 60)
    hours = round(seconds / 3600)
    days = round(seconds / 86400)
    if minutes == 0:
        return _plural(round(seconds), "second")
    if minutes < 60:
        return _plural(minutes, "minute")
    if hours < 48:
        return _plural(hours, "hour")
    return _plural(days, "day")


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
