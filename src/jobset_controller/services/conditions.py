"""Condition state machine for JobSet status.

Each condition type moves independently between absent, False and True.
Conditions are only written through ``update_condition``, which keeps the
list free of duplicate types and makes repeated updates no-ops.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from jobset_controller.models.common import ConditionStatus, JobSetConditionType, TerminalState
from jobset_controller.models.jobset import Condition

if TYPE_CHECKING:
    from jobset_controller.models.jobset import JobSet

logger = logging.getLogger(__name__)

# Reasons and messages
ALL_JOBS_COMPLETED_REASON = "AllJobsCompleted"
ALL_JOBS_COMPLETED_MESSAGE = "jobset completed successfully"
FAILED_JOBS_REASON = "FailedJobs"
FAILED_JOBS_MESSAGE = "jobset failed due to one or more job failures"
REACHED_MAX_RESTARTS_REASON = "ReachedMaxRestarts"
REACHED_MAX_RESTARTS_MESSAGE = "jobset failed due to reaching max number of restarts"
SUSPENDED_REASON = "SuspendedJobs"
SUSPENDED_MESSAGE = "jobset is suspended"
RESUMED_REASON = "ResumeJobs"
RESUMED_MESSAGE = "jobset is resumed"
STARTUP_IN_PROGRESS_REASON = "InOrderStartupPolicyInProgress"
STARTUP_IN_PROGRESS_MESSAGE = "in order startup policy is in progress"
STARTUP_COMPLETED_REASON = "InOrderStartupPolicyCompleted"
STARTUP_COMPLETED_MESSAGE = "in order startup policy has completed"


@dataclass(frozen=True)
class ConditionUpdate:
    """A condition to write together with its write mode.

    ``force_update`` writes the condition even when its status is not True.
    ``event_type`` is the Kubernetes Event type emitted when it is written.
    """

    condition: Condition
    force_update: bool = False
    event_type: str = "Normal"


def _same(a: Condition, b: Condition) -> bool:
    return a.status == b.status and a.reason == b.reason and a.message == b.message


def update_condition(
    js: JobSet,
    condition: Condition,
    force_update: bool = False,
    now: datetime | None = None,
) -> bool:
    """Write ``condition`` into the JobSet's status if it changes anything.

    - An existing condition of the same type with the same status, reason and
      message makes this a no-op, forced or not.
    - A False or Unknown condition is only written when ``force_update`` is
      set.
    - Otherwise the condition replaces the existing one of its type, or is
      appended, with ``lastTransitionTime`` set to ``now``.

    Args:
        js: JobSet whose status is updated in place
        condition: Candidate condition
        force_update: Write the condition even if its status is not True
        now: Transition time (defaults to the current UTC time)

    Returns:
        True if the condition list changed
    """
    existing_index = next(
        (i for i, c in enumerate(js.status.conditions) if c.type == condition.type),
        None,
    )
    if existing_index is not None and _same(js.status.conditions[existing_index], condition):
        return False

    if condition.status != ConditionStatus.TRUE and not force_update:
        return False

    written = condition.model_copy(update={"last_transition_time": now or datetime.now(UTC)})
    if existing_index is None:
        js.status.conditions.append(written)
    else:
        js.status.conditions[existing_index] = written

    logger.debug(
        "JobSet %s/%s condition %s=%s (%s)",
        js.namespace,
        js.name,
        written.type,
        written.status.value,
        written.reason,
    )
    return True


def apply_condition(js: JobSet, update: ConditionUpdate, now: datetime | None = None) -> bool:
    """Apply a ``ConditionUpdate``, recording the terminal state it implies."""
    changed = update_condition(js, update.condition, update.force_update, now)
    if changed and update.condition.status == ConditionStatus.TRUE:
        if update.condition.type == JobSetConditionType.COMPLETED.value:
            js.status.terminal_state = TerminalState.COMPLETED.value
        elif update.condition.type == JobSetConditionType.FAILED.value:
            js.status.terminal_state = TerminalState.FAILED.value
    return changed


def completed_condition() -> ConditionUpdate:
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.COMPLETED.value,
            status=ConditionStatus.TRUE,
            reason=ALL_JOBS_COMPLETED_REASON,
            message=ALL_JOBS_COMPLETED_MESSAGE,
        )
    )


def failed_condition(reason: str, message: str) -> ConditionUpdate:
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.FAILED.value,
            status=ConditionStatus.TRUE,
            reason=reason,
            message=message,
        ),
        event_type="Warning",
    )


def suspended_condition() -> ConditionUpdate:
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.SUSPENDED.value,
            status=ConditionStatus.TRUE,
            reason=SUSPENDED_REASON,
            message=SUSPENDED_MESSAGE,
        )
    )


def resumed_condition() -> ConditionUpdate:
    # Flipping Suspended back to False needs a forced write
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.SUSPENDED.value,
            status=ConditionStatus.FALSE,
            reason=RESUMED_REASON,
            message=RESUMED_MESSAGE,
        ),
        force_update=True,
    )


def startup_in_progress_condition() -> ConditionUpdate:
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.STARTUP_POLICY_COMPLETED.value,
            status=ConditionStatus.FALSE,
            reason=STARTUP_IN_PROGRESS_REASON,
            message=STARTUP_IN_PROGRESS_MESSAGE,
        ),
        force_update=True,
    )


def startup_completed_condition() -> ConditionUpdate:
    return ConditionUpdate(
        Condition(
            type=JobSetConditionType.STARTUP_POLICY_COMPLETED.value,
            status=ConditionStatus.TRUE,
            reason=STARTUP_COMPLETED_REASON,
            message=STARTUP_COMPLETED_MESSAGE,
        ),
        force_update=True,
    )


def message_with_first_failed_job(message: str, job_name: str | None) -> str:
    if not job_name:
        return message
    return f"{message} (first failed job: {job_name})"
