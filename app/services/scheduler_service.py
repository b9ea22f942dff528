"""
app/services/scheduler_service.py

Purpose: Periodic reminder scheduling

- Fires a reminder cycle every interval_minutes (first one immediately)
- Single-flight: overlapping timer ticks are skipped, manual runs wait
- Retries failed cycles with a fixed delay, then waits for the next tick
- Run statistics for the operator API
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from app.core.logging import LogContext, get_logger
from app.schemas.reminder import ReminderConfig, ReminderRun, RunOutcome, SchedulerStats
from utils.time_utils import utc_now

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    RETRY_PENDING = "RETRY_PENDING"


class ReminderScheduler:
    """
    Drives ReminderService.process_scheduled_reminders on a timer.

    One instance per process. The clock and sleep function are injected
    so tests can run cycles and retries without real waiting.
    """

    def __init__(
        self,
        reminder_service,
        config: Optional[ReminderConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self._service = reminder_service
        self._apply_config(config or ReminderConfig.from_settings())
        self._clock = clock
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_tasks: Set[asyncio.Task] = set()
        self._active = False
        self._state = SchedulerState.IDLE

        self._reset_counters()

    def _reset_counters(self) -> None:
        self._total_runs = 0
        self._successful_runs = 0
        self._failed_runs = 0
        self._skipped_runs = 0
        self._last_run_time: Optional[datetime] = None
        self._next_run_time: Optional[datetime] = None
        self._last_outcome: Optional[RunOutcome] = None
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, config: Optional[ReminderConfig] = None) -> bool:
        """
        Arms the timer. Must be called from a running event loop.

        Returns:
            True if the timer was armed, False if disabled or already active
        """
        if self._active:
            logger.info("Reminder scheduler already active")
            return False

        if config is not None:
            self._apply_config(config)

        if not self._config.enabled:
            logger.info("Reminder scheduler disabled by configuration")
            return False

        self._active = True
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(f"⏰ Reminder scheduler started (every {self._config.interval_minutes:g} min)")
        return True

    def stop(self) -> None:
        """
        Disarms the timer. A cycle already running finishes its current
        attempt; its pending retries are abandoned.
        """
        was_active = self._active
        self._active = False
        self._next_run_time = None

        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

        if was_active:
            logger.info("Reminder scheduler stopped")

    async def shutdown(self) -> None:
        """
        Stops the timer and waits for in-flight cycles.
        """
        timer = self._timer_task
        self.stop()
        if timer is not None:
            await asyncio.gather(timer, return_exceptions=True)

        if not self._cycle_tasks:
            return

        for task in list(self._cycle_tasks):
            if self._state == SchedulerState.RETRY_PENDING:
                task.cancel()
        await asyncio.gather(*self._cycle_tasks, return_exceptions=True)

    def update_config(self, **changes) -> ReminderConfig:
        """
        Merges config changes, restarting the timer if it was running.
        The reminder service picks up the new windows on its next cycle.

        Raises:
            pydantic.ValidationError: If the merged config is invalid
        """
        merged = ReminderConfig(**{**self._config.model_dump(), **changes})
        was_active = self._active

        self.stop()
        self._apply_config(merged)
        logger.info(f"Reminder scheduler config updated: {changes}")

        if was_active and merged.enabled:
            self.start()
        return merged

    def _apply_config(self, config: ReminderConfig) -> None:
        # The dispatcher computes windows from the same object
        self._config = config
        self._service.config = config

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def _timer_loop(self) -> None:
        interval = self._config.interval_minutes * 60
        while self._active:
            self._spawn_tick()
            self._next_run_time = self._clock() + timedelta(seconds=interval)
            await self._sleep(interval)

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self.tick())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    async def tick(self) -> Optional[ReminderRun]:
        """
        One timer tick. Skipped (not queued) while a cycle is in flight.
        """
        if self._lock.locked():
            self._skipped_runs += 1
            logger.warning("Reminder cycle still running, skipping tick")
            return None

        async with self._lock:
            return await self._run_cycle(trigger="timer")

    async def run_now(self) -> ReminderRun:
        """
        Runs one cycle on demand, after any in-flight cycle finishes.
        """
        async with self._lock:
            return await self._run_cycle(trigger="manual")

    async def _run_cycle(self, trigger: str) -> ReminderRun:
        run = ReminderRun(run_id=uuid.uuid4().hex[:12], trigger=trigger, started_at=self._clock())
        max_attempts = 1 + self._config.max_retries
        retry_delay = self._config.retry_delay_minutes * 60

        with LogContext(run_id=run.run_id):
            logger.info(f"🔔 Reminder cycle started ({trigger})")

            while True:
                run.attempts += 1
                self._state = SchedulerState.RUNNING
                try:
                    results = await self._service.process_scheduled_reminders(self._clock())
                    run.record(results)
                    run.outcome = RunOutcome.SUCCESS
                    run.error = None
                    break
                except Exception as e:
                    run.error = str(e)
                    logger.error(f"Reminder cycle attempt {run.attempts}/{max_attempts} failed: {e}", exc_info=True)

                if run.attempts >= max_attempts:
                    run.outcome = RunOutcome.FAILED
                    break

                self._state = SchedulerState.RETRY_PENDING
                logger.info(f"Retrying reminder cycle in {retry_delay:g}s")
                await self._sleep(retry_delay)

                if trigger == "timer" and not self._active:
                    logger.info("Scheduler stopped, abandoning cycle retries")
                    run.outcome = RunOutcome.FAILED
                    break

            run.finished_at = self._clock()
            self._record(run)
            self._state = SchedulerState.IDLE

            logger.info(
                f"Reminder cycle {run.outcome.value}: processed={run.processed} "
                f"succeeded={run.succeeded} failed={run.failed} skipped={run.skipped} attempts={run.attempts}"
            )
        return run

    def _record(self, run: ReminderRun) -> None:
        self._total_runs += 1
        if run.outcome == RunOutcome.SUCCESS:
            self._successful_runs += 1
        else:
            self._failed_runs += 1
        self._last_run_time = run.finished_at
        self._last_outcome = run.outcome
        self._last_error = run.error

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_active(self) -> bool:
        return self._active

    def get_config(self) -> ReminderConfig:
        return self._config

    def get_stats(self) -> SchedulerStats:
        return SchedulerStats(
            state=self._state.value,
            is_active=self._active,
            is_running=self._lock.locked(),
            total_runs=self._total_runs,
            successful_runs=self._successful_runs,
            failed_runs=self._failed_runs,
            skipped_runs=self._skipped_runs,
            last_run_time=self._last_run_time,
            next_run_time=self._next_run_time,
            last_outcome=self._last_outcome,
            last_error=self._last_error
        )

    def reset_stats(self) -> None:
        self._reset_counters()
