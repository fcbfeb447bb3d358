"""Success and failure policies of a JobSet."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from jobset_controller.models.common import SuccessPolicyOperator
from jobset_controller.models.jobset import SuccessPolicy
from jobset_controller.services.child_jobs import find_first_failed_job, replicated_job_name
from jobset_controller.services.conditions import (
    FAILED_JOBS_MESSAGE,
    FAILED_JOBS_REASON,
    REACHED_MAX_RESTARTS_MESSAGE,
    REACHED_MAX_RESTARTS_REASON,
    ConditionUpdate,
    failed_condition,
    message_with_first_failed_job,
)

if TYPE_CHECKING:
    from jobset_controller.models.jobset import JobSet
    from jobset_controller.services.child_jobs import ChildJobs

logger = logging.getLogger(__name__)


def _success_policy(js: JobSet) -> SuccessPolicy:
    return js.spec.success_policy or SuccessPolicy()


def replicated_job_matches_success_policy(js: JobSet, name: str | None) -> bool:
    targets = _success_policy(js).target_replicated_jobs
    return name is not None and (not targets or name in targets)


def num_jobs_expected_to_succeed(js: JobSet) -> int:
    """Number of successful Jobs needed for the JobSet to complete."""
    if _success_policy(js).operator == SuccessPolicyOperator.ANY:
        return 1
    return sum(
        rjob.replicas
        for rjob in js.spec.replicated_jobs
        if replicated_job_matches_success_policy(js, rjob.name)
    )


def success_policy_satisfied(js: JobSet, owned: ChildJobs) -> bool:
    """Whether enough targeted Jobs have succeeded to complete the JobSet."""
    succeeded = sum(
        1
        for job in owned.successful
        if replicated_job_matches_success_policy(js, replicated_job_name(job))
    )
    return succeeded >= num_jobs_expected_to_succeed(js)


@dataclass(frozen=True)
class FailureDecision:
    """Outcome of the failure policy after a child Job failed.

    Either ``restart`` is True and the JobSet starts a new attempt, or
    ``condition`` marks it Failed.
    """

    restart: bool
    condition: ConditionUpdate | None = None


def decide_failure(js: JobSet, owned: ChildJobs) -> FailureDecision:
    """Apply the failure policy to a JobSet with at least one failed Job."""
    first_failed = find_first_failed_job(owned.failed)
    first_name = first_failed.metadata.name if first_failed is not None else None

    policy = js.spec.failure_policy
    if policy is None:
        return FailureDecision(
            restart=False,
            condition=failed_condition(
                FAILED_JOBS_REASON,
                message_with_first_failed_job(FAILED_JOBS_MESSAGE, first_name),
            ),
        )

    if js.status.restarts >= policy.max_restarts:
        logger.info(
            "JobSet %s/%s reached max restarts (%d)",
            js.namespace,
            js.name,
            policy.max_restarts,
        )
        return FailureDecision(
            restart=False,
            condition=failed_condition(
                REACHED_MAX_RESTARTS_REASON,
                message_with_first_failed_job(REACHED_MAX_RESTARTS_MESSAGE, first_name),
            ),
        )

    return FailureDecision(restart=True)
