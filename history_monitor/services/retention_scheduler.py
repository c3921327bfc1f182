"""Retention scheduler: periodic deletion of aged history files.

State machine:
    DISABLED --enable--> ARMED(next) --interval elapsed--> RUNNING
    RUNNING --finished or failed--> ARMED(now + interval)
    ARMED/RUNNING --disable--> DISABLED

Rescheduling is computed from the time a run finishes, not from the
previous deadline, so a host that slept through several intervals runs
cleanup once and moves on.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError

from history_monitor.models.retention import (
    CleanupResult,
    RetentionConfig,
    RetentionState,
    RetentionStatus,
)
from history_monitor.services.event_bus import (
    AUTO_CLEANUP_CONFIG_UPDATED,
    AUTO_CLEANUP_ERROR,
    AUTO_CLEANUP_EXECUTED,
    AUTO_CLEANUP_TICK,
    EventBus,
)
from history_monitor.services.log_store import LogStore

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_MS = 1000


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _thread_timer(delay_s: float, fn: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay_s, fn)
    timer.daemon = True
    return timer


@dataclass
class SchedulerResult:
    """Result of a request made to the scheduler."""

    success: bool
    state: RetentionState
    cleanup: CleanupResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "state": self.state.to_event()}
        if self.cleanup is not None:
            data["deletedCount"] = self.cleanup.deleted_count
            data["deletedFiles"] = self.cleanup.deleted_files
            data["failedFiles"] = self.cleanup.failed_files
            data["nextCleanupTime"] = self.cleanup.next_cleanup_time
        if self.error:
            data["error"] = self.error
        return data


class RetentionScheduler:
    """Cancellable, re-armable cleanup loop over a LogStore.

    Two timers exist while enabled: the cleanup timer (one pending at a
    time, for next_cleanup_time) and a short tick timer that reports the
    remaining time. Timers carry the token they were scheduled under; a
    timer whose token is stale when it fires does nothing, so no callback
    runs after disable() or shutdown() returns.
    """

    def __init__(
        self,
        store: LogStore,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] | None = None,
        timer_factory: TimerFactory | None = None,
        tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
    ):
        """Initialize the scheduler in the DISABLED state.

        Args:
            store: Store whose aged files are deleted.
            event_bus: Receives the auto-cleanup-* events.
            clock: Returns the current time in epoch ms.
            timer_factory: Builds a startable, cancellable timer from a delay
                in seconds and a callback (threading.Timer by default).
            tick_interval_ms: Countdown tick period.
        """
        self.store = store
        self.event_bus = event_bus
        self._clock = clock or _wall_clock_ms
        self._timer_factory = timer_factory or _thread_timer
        self.tick_interval_ms = tick_interval_ms

        self._state = RetentionState()
        self._lock = threading.RLock()
        self._running = False
        # enable/disable lifetime; guards the tick loop
        self._generation = 0
        # one value per armed cleanup deadline
        self._arm_token = 0
        self._cleanup_timer: Timer | None = None
        self._tick_timer: Timer | None = None

    @property
    def state(self) -> RetentionState:
        with self._lock:
            return self._state.model_copy()

    def _emit(self, event_type: str, data: dict) -> None:
        if self.event_bus:
            self.event_bus.emit(event_type, data)

    def _cancel_timers(self) -> None:
        for timer in (self._cleanup_timer, self._tick_timer):
            if timer is not None:
                timer.cancel()
        self._cleanup_timer = None
        self._tick_timer = None

    def _arm(self, now: int) -> None:
        """Schedule the next cleanup interval_ms after ``now``. Lock held."""
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
        self._arm_token += 1
        token = self._arm_token
        self._state.next_cleanup_time = now + self._state.interval_ms
        self._state.status = RetentionStatus.ARMED
        timer = self._timer_factory(
            self._state.interval_ms / 1000, lambda: self._on_cleanup_timer(token)
        )
        self._cleanup_timer = timer
        timer.start()

    def _schedule_tick(self) -> None:
        """Schedule the next countdown tick. Lock held."""
        generation = self._generation
        timer = self._timer_factory(self.tick_interval_ms / 1000, lambda: self._on_tick(generation))
        self._tick_timer = timer
        timer.start()

    def enable(self, interval_ms: int, retain_ms: int) -> SchedulerResult:
        """Enable (or reconfigure) auto-cleanup and arm a fresh deadline.

        Invalid parameters leave the current state untouched.
        """
        try:
            config = RetentionConfig(enabled=True, interval_ms=interval_ms, retain_ms=retain_ms)
        except ValidationError as e:
            message = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            logger.warning(f"Rejected retention configuration: {message}")
            return SchedulerResult(success=False, state=self.state, error=message)

        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._state.enabled = True
            self._state.interval_ms = config.interval_ms
            self._state.retain_ms = config.retain_ms
            self._arm(self._clock())
            if self._running:
                self._state.status = RetentionStatus.RUNNING
            self._schedule_tick()
            snapshot = self._state.model_copy()

        logger.info(
            f"Auto-cleanup enabled: every {config.interval_ms}ms, retaining {config.retain_ms}ms"
        )
        self._emit(AUTO_CLEANUP_CONFIG_UPDATED, snapshot.to_event())
        return SchedulerResult(success=True, state=snapshot)

    def disable(self) -> SchedulerResult:
        """Cancel all pending timers and move to DISABLED."""
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._arm_token += 1
            self._state.enabled = False
            self._state.next_cleanup_time = None
            self._state.status = RetentionStatus.DISABLED
            snapshot = self._state.model_copy()

        logger.info("Auto-cleanup disabled")
        self._emit(AUTO_CLEANUP_CONFIG_UPDATED, snapshot.to_event())
        return SchedulerResult(success=True, state=snapshot)

    def apply_config(self, config: RetentionConfig) -> SchedulerResult:
        """Apply a RetentionConfig loaded from configuration or the API."""
        if config.enabled:
            return self.enable(config.interval_ms, config.retain_ms)
        with self._lock:
            self._state.interval_ms = config.interval_ms
            self._state.retain_ms = config.retain_ms
        return self.disable()

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._state.enabled:
                return
            self._schedule_tick()
            if self._running or self._state.next_cleanup_time is None:
                return
            next_time = self._state.next_cleanup_time
            remaining = max(0, next_time - self._clock())
            # emitted under the lock so a concurrent disable() cannot return first
            self._emit(AUTO_CLEANUP_TICK, {"nextCleanupTime": next_time, "remainingMs": remaining})

    def _on_cleanup_timer(self, token: int) -> None:
        self._run_cleanup(arm_token=token)

    def run_cleanup(self) -> SchedulerResult:
        """Delete files older than now - retain_ms, then re-arm.

        Overlapping calls are rejected while a run is in progress. A failed
        run still re-arms when the scheduler is enabled.
        """
        return self._run_cleanup()

    def _run_cleanup(self, arm_token: int | None = None) -> SchedulerResult | None:
        """Run one cleanup.

        Timer-driven runs pass the arm token they were scheduled under. Such
        a run is skipped when the token is stale, and stays silent when the
        scheduler was disabled or reconfigured while it was deleting.
        """
        with self._lock:
            if arm_token is not None and (arm_token != self._arm_token or not self._state.enabled):
                return None
            if self._running:
                return SchedulerResult(
                    success=False, state=self._state.model_copy(), error="Cleanup already running"
                )
            self._running = True
            generation = self._generation
            if self._cleanup_timer is not None:
                self._cleanup_timer.cancel()
                self._cleanup_timer = None
            # a pending deadline timer that already fired becomes stale
            self._arm_token += 1
            self._state.status = RetentionStatus.RUNNING
            cutoff = self._clock() - self._state.retain_ms

        cleanup: CleanupResult | None = None
        error: str | None = None
        try:
            cleanup = self.store.delete_older_than(cutoff)
        except Exception as e:
            logger.exception("Auto-cleanup failed")
            error = str(e) or type(e).__name__

        with self._lock:
            self._running = False
            finished = self._clock()
            self._state.last_cleanup_time = finished
            if self._state.enabled:
                self._arm(finished)
            else:
                self._state.status = RetentionStatus.DISABLED
                self._state.next_cleanup_time = None
            snapshot = self._state.model_copy()
            silent = arm_token is not None and generation != self._generation

            if cleanup is None:
                if not silent:
                    self._emit(AUTO_CLEANUP_ERROR, {"error": error})
                return SchedulerResult(success=False, state=snapshot, error=error)

            cleanup.next_cleanup_time = snapshot.next_cleanup_time
            logger.info(
                f"Auto-cleanup removed {cleanup.deleted_count} entries; "
                f"next run at {snapshot.next_cleanup_time}"
            )
            if not silent:
                payload = {
                    "deletedCount": cleanup.deleted_count,
                    "nextCleanupTime": snapshot.next_cleanup_time,
                }
                if cleanup.failed_files:
                    payload["failedFiles"] = cleanup.failed_files
                self._emit(AUTO_CLEANUP_EXECUTED, payload)
            return SchedulerResult(success=True, state=snapshot, cleanup=cleanup, error=cleanup.error)

    def trigger_now(self) -> SchedulerResult:
        """Run a cleanup immediately at the user's request."""
        logger.info("Manual cleanup triggered")
        return self.run_cleanup()

    def status(self) -> dict[str, Any]:
        """Countdown snapshot for the UI."""
        with self._lock:
            next_time = self._state.next_cleanup_time if self._state.enabled else None
            remaining = max(0, next_time - self._clock()) if next_time is not None else 0
            return {
                "enabled": self._state.enabled,
                "nextCleanupTime": next_time,
                "remainingMs": remaining,
            }

    def shutdown(self) -> None:
        """Cancel every timer without emitting events."""
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._arm_token += 1
