"""Time-to-live after a JobSet finishes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from jobset_controller.core.errors import JobSetStateError
from jobset_controller.models.common import JobSetConditionType

if TYPE_CHECKING:
    from jobset_controller.models.jobset import JobSet

logger = logging.getLogger(__name__)

_TERMINAL_TYPES = (JobSetConditionType.COMPLETED.value, JobSetConditionType.FAILED.value)


def jobset_finish_time(js: JobSet) -> datetime:
    """Transition time of the JobSet's True Completed or Failed condition.

    Raises:
        JobSetStateError: If the JobSet has not finished
    """
    for condition in js.status.conditions:
        if condition.type in _TERMINAL_TYPES and condition.is_true():
            if condition.last_transition_time is None:
                break
            return condition.last_transition_time
    raise JobSetStateError(
        f"unable to find the time when the JobSet {js.namespace}/{js.name} finished"
    )


def time_left(js: JobSet, now: datetime | None) -> timedelta | None:
    """Time until a finished JobSet may be deleted.

    Args:
        js: A finished JobSet
        now: Reference time

    Returns:
        None if no TTL is configured or ``now`` is None, otherwise the
        remaining time, clamped at zero once the TTL has passed

    Raises:
        JobSetStateError: If the JobSet has not finished
    """
    finish_time = jobset_finish_time(js)
    ttl = js.spec.ttl_seconds_after_finished
    if ttl is None or now is None:
        return None

    if finish_time > now:
        logger.warning(
            "JobSet %s/%s finished in the future (%s > %s), likely clock skew; "
            "cleanup will be deferred",
            js.namespace,
            js.name,
            finish_time.isoformat(),
            now.isoformat(),
        )

    expire_at = finish_time + timedelta(seconds=ttl)
    remaining = max(expire_at - now, timedelta(0))
    logger.debug(
        "JobSet %s/%s finished at %s, expires at %s, %s remaining",
        js.namespace,
        js.name,
        finish_time.isoformat(),
        expire_at.isoformat(),
        remaining,
    )
    return remaining
