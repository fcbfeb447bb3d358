"""Tests for the JobSet condition state machine."""

from datetime import timedelta

from jobset_controller.models.common import ConditionStatus, JobSetConditionType, TerminalState
from jobset_controller.models.jobset import Condition
from jobset_controller.services.conditions import (
    FAILED_JOBS_REASON,
    apply_condition,
    completed_condition,
    failed_condition,
    message_with_first_failed_job,
    resumed_condition,
    suspended_condition,
    update_condition,
)


def _suspended(status: ConditionStatus, reason: str = "SuspendedJobs") -> Condition:
    return Condition(
        type=JobSetConditionType.SUSPENDED.value,
        status=status,
        reason=reason,
        message="jobset is suspended",
    )


class TestUpdateCondition:
    """Tests for update_condition."""

    def test_true_condition_is_appended(self, make_jobset, clock):
        """Test that a new True condition is written with the clock's time."""
        js = make_jobset()

        assert update_condition(js, _suspended(ConditionStatus.TRUE), now=clock.now()) is True

        [written] = js.status.conditions
        assert written.status == ConditionStatus.TRUE
        assert written.last_transition_time == clock.now()

    def test_identical_condition_is_not_rewritten(self, make_jobset, clock):
        """Test that applying the same condition twice changes nothing."""
        js = make_jobset()
        update_condition(js, _suspended(ConditionStatus.TRUE), now=clock.now())
        first_time = js.status.conditions[0].last_transition_time
        clock.advance(timedelta(minutes=1))

        assert update_condition(js, _suspended(ConditionStatus.TRUE), now=clock.now()) is False
        assert update_condition(
            js, _suspended(ConditionStatus.TRUE), force_update=True, now=clock.now()
        ) is False
        assert len(js.status.conditions) == 1
        assert js.status.conditions[0].last_transition_time == first_time

    def test_false_without_force_is_ignored(self, make_jobset):
        """Test that False and Unknown conditions need a forced write."""
        js = make_jobset()

        assert update_condition(js, _suspended(ConditionStatus.FALSE)) is False
        assert update_condition(js, _suspended(ConditionStatus.UNKNOWN)) is False
        assert js.status.conditions == []

    def test_false_with_force_is_written(self, make_jobset, clock):
        """Test that a forced False condition is written."""
        js = make_jobset()

        assert update_condition(
            js, _suspended(ConditionStatus.FALSE), force_update=True, now=clock.now()
        ) is True
        assert js.status.conditions[0].status == ConditionStatus.FALSE

    def test_changed_condition_replaces_in_place(self, make_jobset, clock):
        """Test that a differing condition replaces the existing one of its type."""
        js = make_jobset()
        js.status.conditions.append(
            Condition(type="Other", status=ConditionStatus.TRUE, reason="X")
        )
        update_condition(js, _suspended(ConditionStatus.TRUE), now=clock.now())
        clock.advance(timedelta(seconds=30))

        changed = update_condition(
            js, _suspended(ConditionStatus.TRUE, reason="Different"), now=clock.now()
        )

        assert changed is True
        assert [c.type for c in js.status.conditions] == ["Other", "Suspended"]
        assert js.status.conditions[1].reason == "Different"
        assert js.status.conditions[1].last_transition_time == clock.now()


class TestConditionUpdates:
    """Tests for the predefined condition updates."""

    def test_completed_sets_terminal_state(self, make_jobset, clock):
        """Test that recording Completed marks the terminal state."""
        js = make_jobset()

        assert apply_condition(js, completed_condition(), clock.now()) is True
        assert js.status.terminal_state == TerminalState.COMPLETED.value
        assert js.finished is True

    def test_failed_sets_terminal_state(self, make_jobset, clock):
        """Test that recording Failed marks the terminal state and warns."""
        js = make_jobset()
        update = failed_condition(FAILED_JOBS_REASON, "boom")

        assert update.event_type == "Warning"
        assert apply_condition(js, update, clock.now()) is True
        assert js.status.terminal_state == TerminalState.FAILED.value

    def test_resume_flips_suspended_to_false(self, make_jobset, clock):
        """Test that resuming overwrites a True Suspended condition."""
        js = make_jobset()
        apply_condition(js, suspended_condition(), clock.now())

        assert apply_condition(js, resumed_condition(), clock.now()) is True
        suspended = js.find_condition(JobSetConditionType.SUSPENDED)
        assert suspended.status == ConditionStatus.FALSE
        assert suspended.reason == "ResumeJobs"
        assert js.status.terminal_state is None
        assert apply_condition(js, resumed_condition(), clock.now()) is False

    def test_message_with_first_failed_job(self):
        """Test the failure message format."""
        assert message_with_first_failed_job("failed", "js-a-0") == (
            "failed (first failed job: js-a-0)"
        )
        assert message_with_first_failed_job("failed", None) == "failed"
