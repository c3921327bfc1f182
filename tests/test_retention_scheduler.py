"""Tests for RetentionScheduler with a simulated clock."""

from unittest.mock import MagicMock

import pytest

from history_monitor.models.retention import CleanupResult, RetentionConfig, RetentionStatus
from history_monitor.services.event_bus import (
    AUTO_CLEANUP_CONFIG_UPDATED,
    AUTO_CLEANUP_ERROR,
    AUTO_CLEANUP_EXECUTED,
    AUTO_CLEANUP_TICK,
    EventBus,
)
from history_monitor.services.retention_scheduler import RetentionScheduler

START_MS = 1_700_000_000_000


class FakeTimer:
    def __init__(self, clock: "FakeClock", delay_s: float, fn):
        self.clock = clock
        self.due = clock.now + round(delay_s * 1000)
        self.fn = fn
        self.started = False
        self.cancelled = False
        self.seq = 0

    def start(self):
        self.started = True
        self.seq = self.clock.next_seq()
        self.clock.timers.append(self)

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Deterministic clock and timer factory for the scheduler."""

    def __init__(self, now: int = START_MS):
        self.now = now
        self.timers: list[FakeTimer] = []
        self._seq = 0

    def next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def __call__(self) -> int:
        return self.now

    def timer(self, delay_s, fn):
        return FakeTimer(self, delay_s, fn)

    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]

    def advance(self, ms: int) -> None:
        """Move time forward, firing due timers in (due, start order)."""
        target = self.now + ms
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self.timers.remove(timer)
            self.now = timer.due
            timer.fn()
        self.now = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = MagicMock()
    store.delete_older_than.return_value = CleanupResult(deleted_count=3, deleted_files=["a.jsonl"])
    return store


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def events(event_bus):
    received = []
    event_bus.subscribe("*", received.append)
    return received


@pytest.fixture
def scheduler(store, event_bus, clock):
    return RetentionScheduler(store, event_bus, clock=clock, timer_factory=clock.timer)


def _of_type(events, event_type):
    return [e for e in events if e.event_type == event_type]


class TestEnableDisable:
    """Tests for arming and disarming."""

    def test_starts_disabled(self, scheduler):
        assert scheduler.state.status == RetentionStatus.DISABLED
        assert scheduler.status() == {"enabled": False, "nextCleanupTime": None, "remainingMs": 0}

    def test_enable_arms(self, scheduler, clock, events):
        result = scheduler.enable(5000, 1000)

        assert result.success
        assert result.state.status == RetentionStatus.ARMED
        assert result.state.next_cleanup_time == START_MS + 5000
        assert scheduler.status()["remainingMs"] == 5000
        updates = _of_type(events, AUTO_CLEANUP_CONFIG_UPDATED)
        assert len(updates) == 1
        assert updates[0].data["enabled"] is True
        assert updates[0].data["intervalMs"] == 5000

    def test_invalid_parameters_leave_state_unchanged(self, scheduler, events):
        scheduler.enable(5000, 1000)
        before = scheduler.state

        result = scheduler.enable(0, -1)

        assert not result.success
        assert "interval_ms" in result.error
        assert scheduler.state == before
        assert len(_of_type(events, AUTO_CLEANUP_CONFIG_UPDATED)) == 1

    def test_reenable_replaces_timer(self, scheduler, clock, store):
        """Only one cleanup deadline is ever pending."""
        scheduler.enable(5000, 1000)
        clock.advance(3000)
        scheduler.enable(5000, 1000)

        clock.advance(2500)
        store.delete_older_than.assert_not_called()
        clock.advance(2500)
        store.delete_older_than.assert_called_once()

    def test_disable_stops_everything(self, scheduler, clock, store, events):
        scheduler.enable(1000, 1000)
        result = scheduler.disable()
        events.clear()

        clock.advance(10_000)

        assert result.state.status == RetentionStatus.DISABLED
        store.delete_older_than.assert_not_called()
        assert events == []

    def test_stale_timer_is_noop(self, scheduler, clock, store, events):
        """A timer that fires after disable() does nothing."""
        scheduler.enable(1000, 1000)
        stale = list(clock.pending())
        scheduler.disable()
        events.clear()

        for timer in stale:
            timer.fn()

        store.delete_older_than.assert_not_called()
        assert events == []

    def test_apply_disabled_config(self, scheduler):
        scheduler.enable(1000, 1000)
        result = scheduler.apply_config(RetentionConfig(enabled=False, interval_ms=2000, retain_ms=5))
        assert not result.state.enabled
        assert result.state.interval_ms == 2000


class TestCleanupLoop:
    """Tests for periodic cleanup."""

    def test_two_runs_in_2500ms(self, scheduler, clock, store, events):
        """Cleanup runs repeatedly with strictly increasing deadlines."""
        deadlines = []

        def record_deadline(event):
            deadlines.append((clock.now, event.data["nextCleanupTime"]))

        scheduler.event_bus.subscribe(AUTO_CLEANUP_EXECUTED, record_deadline)
        scheduler.enable(interval_ms=1000, retain_ms=1000)
        clock.advance(2500)

        assert store.delete_older_than.call_count >= 2
        assert len(deadlines) >= 2
        for now, next_time in deadlines:
            assert next_time > now
        next_times = [n for _, n in deadlines]
        assert next_times == sorted(set(next_times))

        # each run is cut off at now - retainMs
        cutoffs = [call.args[0] for call in store.delete_older_than.call_args_list]
        assert cutoffs == [START_MS + 1000 - 1000, START_MS + 2000 - 1000]

    def test_next_is_last_plus_interval(self, scheduler, clock):
        scheduler.enable(1000, 0)
        clock.advance(1000)
        state = scheduler.state
        assert state.last_cleanup_time == START_MS + 1000
        assert state.next_cleanup_time == state.last_cleanup_time + state.interval_ms

    def test_ticks_count_down(self, scheduler, clock, events):
        """Ticks between cleanups report strictly decreasing remainingMs."""
        scheduler.enable(interval_ms=5000, retain_ms=1000)
        clock.advance(4500)

        remaining = [e.data["remainingMs"] for e in _of_type(events, AUTO_CLEANUP_TICK)]
        assert remaining == [4000, 3000, 2000, 1000]
        assert scheduler.state.next_cleanup_time == START_MS + 5000

    def test_ticks_between_cleanups_decrease(self, scheduler, clock, events):
        scheduler.enable(interval_ms=3000, retain_ms=1000)
        clock.advance(9500)

        segment: list[int] = []
        for event in events:
            if event.event_type == AUTO_CLEANUP_EXECUTED:
                assert segment == sorted(segment, reverse=True)
                assert len(set(segment)) == len(segment)
                segment = []
            elif event.event_type == AUTO_CLEANUP_TICK:
                segment.append(event.data["remainingMs"])
                assert event.data["remainingMs"] >= 0

    def test_failure_emits_error_and_rearms(self, scheduler, clock, store, events):
        """A failing cleanup does not stop later attempts."""
        store.delete_older_than.side_effect = [OSError("disk gone"), CleanupResult(deleted_count=1)]
        scheduler.enable(1000, 1000)

        clock.advance(1000)
        errors = _of_type(events, AUTO_CLEANUP_ERROR)
        assert errors[0].data == {"error": "disk gone"}
        assert scheduler.state.status == RetentionStatus.ARMED
        assert scheduler.state.next_cleanup_time == START_MS + 2000

        clock.advance(1000)
        executed = _of_type(events, AUTO_CLEANUP_EXECUTED)
        assert executed[0].data == {"deletedCount": 1, "nextCleanupTime": START_MS + 3000}

    def test_partial_failure_reported(self, scheduler, clock, store, events):
        store.delete_older_than.return_value = CleanupResult(
            deleted_count=2, deleted_files=["a"], failed_files=["b"], error="Failed to delete 1 file(s)"
        )
        scheduler.enable(1000, 1000)
        clock.advance(1000)

        executed = _of_type(events, AUTO_CLEANUP_EXECUTED)[0]
        assert executed.data["deletedCount"] == 2
        assert executed.data["failedFiles"] == ["b"]


class TestManualTrigger:
    """Tests for trigger_now and overlap protection."""

    def test_trigger_rearms_from_now(self, scheduler, clock, store):
        scheduler.enable(5000, 1000)
        clock.advance(2000)

        result = scheduler.trigger_now()

        assert result.success
        assert result.cleanup.deleted_count == 3
        assert result.state.next_cleanup_time == START_MS + 2000 + 5000
        clock.advance(4999)
        assert store.delete_older_than.call_count == 1
        clock.advance(1)
        assert store.delete_older_than.call_count == 2

    def test_trigger_while_disabled(self, scheduler, store):
        result = scheduler.trigger_now()
        assert result.success
        assert result.state.status == RetentionStatus.DISABLED
        assert result.state.next_cleanup_time is None
        store.delete_older_than.assert_called_once()

    def test_overlapping_run_rejected(self, scheduler, store):
        nested = []

        def reenter(cutoff):
            nested.append(scheduler.trigger_now())
            return CleanupResult()

        store.delete_older_than.side_effect = reenter
        scheduler.enable(1000, 1000)

        assert scheduler.trigger_now().success
        assert not nested[0].success
        assert nested[0].error == "Cleanup already running"

    def test_shutdown_cancels_timers(self, scheduler, clock, store):
        scheduler.enable(1000, 1000)
        scheduler.shutdown()
        clock.advance(5000)
        store.delete_older_than.assert_not_called()


class TestCancellationDuringRun:
    """disable() racing a timer-driven run."""

    def test_disable_during_timer_run_is_silent(self, scheduler, clock, store, events):
        """Nothing is emitted or re-armed once disable() has returned."""
        cutoffs = []

        def disable_mid_run(cutoff):
            cutoffs.append(cutoff)
            scheduler.disable()
            events.clear()
            return CleanupResult(deleted_count=1)

        store.delete_older_than.side_effect = disable_mid_run
        scheduler.enable(1000, 1000)
        clock.advance(1000)

        assert cutoffs == [START_MS]
        store.delete_older_than.assert_called_once()
        assert events == []
        assert scheduler.state.status == RetentionStatus.DISABLED
        assert scheduler.state.next_cleanup_time is None

        clock.advance(10_000)
        store.delete_older_than.assert_called_once()
        assert events == []

    def test_disable_before_fired_timer_runs(self, scheduler, clock, store, events):
        """A cleanup timer that fired but had not started yet does nothing."""
        scheduler.enable(1000, 1000)
        fired = [t for t in clock.pending() if t.due == START_MS + 1000]
        scheduler.disable()
        events.clear()

        for timer in fired:
            timer.fn()

        store.delete_older_than.assert_not_called()
        assert events == []

    def test_failed_run_after_disable_is_silent(self, scheduler, clock, store, events):
        def fail_after_disable(cutoff):
            scheduler.disable()
            events.clear()
            raise OSError("disk gone")

        store.delete_older_than.side_effect = fail_after_disable
        scheduler.enable(1000, 1000)
        clock.advance(1000)

        assert _of_type(events, AUTO_CLEANUP_ERROR) == []

    def test_manual_trigger_still_reports(self, scheduler, store, events):
        """A user-requested run always reports its outcome."""
        def disable_mid_run(cutoff):
            scheduler.disable()
            return CleanupResult(deleted_count=2)

        store.delete_older_than.side_effect = disable_mid_run
        scheduler.enable(1000, 1000)

        result = scheduler.trigger_now()

        assert result.success
        assert result.cleanup.deleted_count == 2
        assert _of_type(events, AUTO_CLEANUP_EXECUTED)[0].data["deletedCount"] == 2

    def test_stale_tick_is_silent(self, scheduler, clock, events):
        scheduler.enable(5000, 1000)
        ticks = [t for t in clock.pending() if t.due == START_MS + 1000]
        scheduler.disable()
        events.clear()

        for timer in ticks:
            timer.fn()

        assert events == []
