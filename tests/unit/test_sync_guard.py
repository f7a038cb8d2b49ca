"""
Tests for SyncGuard and TriggerResult in shopsync.scheduler.
"""
import pytest

from shopsync.scheduler import SyncGuard, TriggerOutcome, TriggerResult


class FakeMonotonic:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def guard(monotonic):
    return SyncGuard(cooldown_seconds=60, clock=monotonic)


class TestManualTrigger:
    """Tests for the manual trigger rules."""

    def test_first_trigger_accepted(self, guard):
        result = guard.try_acquire_manual()

        assert result.accepted
        assert result.retry_after_seconds is None
        assert guard.in_progress

    def test_rejected_while_in_progress(self, guard):
        guard.try_acquire_manual()

        result = guard.try_acquire_manual()

        assert result.outcome == TriggerOutcome.REJECTED_IN_PROGRESS
        assert not result.accepted

    def test_in_progress_checked_before_cooldown(self, guard, monotonic):
        guard.try_acquire_manual()
        monotonic.now += 5

        assert guard.try_acquire_manual().outcome == TriggerOutcome.REJECTED_IN_PROGRESS

    def test_cooldown_after_completion(self, guard, monotonic):
        """Cooldown counts from the trigger, regardless of completion."""
        guard.try_acquire_manual()
        guard.release()
        monotonic.now += 30.5

        result = guard.try_acquire_manual()

        assert result.outcome == TriggerOutcome.REJECTED_COOLDOWN
        assert result.retry_after_seconds == 30
        assert not guard.in_progress

    def test_allowed_after_cooldown(self, guard, monotonic):
        guard.try_acquire_manual()
        guard.release()
        monotonic.now += 60

        assert guard.try_acquire_manual().accepted

    def test_rejected_trigger_does_not_restart_cooldown(self, guard, monotonic):
        guard.try_acquire_manual()
        guard.release()
        monotonic.now += 50
        guard.try_acquire_manual()
        monotonic.now += 10

        assert guard.try_acquire_manual().accepted

    def test_zero_cooldown(self, monotonic):
        guard = SyncGuard(cooldown_seconds=0, clock=monotonic)
        guard.try_acquire_manual()
        guard.release()

        assert guard.try_acquire_manual().accepted


class TestScheduledAcquire:
    """Tests for the timer path."""

    def test_ignores_cooldown(self, guard):
        guard.try_acquire_manual()
        guard.release()

        assert guard.try_acquire()
        assert guard.in_progress

    def test_respects_in_progress(self, guard):
        assert guard.try_acquire()
        assert not guard.try_acquire()
        assert guard.try_acquire_manual().outcome == TriggerOutcome.REJECTED_IN_PROGRESS

    def test_timer_run_does_not_start_cooldown(self, guard):
        guard.try_acquire()
        guard.release()

        assert guard.cooldown_remaining() == 0
        assert guard.try_acquire_manual().accepted


class TestTriggerResult:
    """Tests for trigger messages."""

    def test_messages(self):
        assert TriggerResult(TriggerOutcome.ACCEPTED).message == "Sync started"
        assert "in progress" in TriggerResult(TriggerOutcome.REJECTED_IN_PROGRESS).message
        assert "42s" in TriggerResult(TriggerOutcome.REJECTED_COOLDOWN, 42).message
