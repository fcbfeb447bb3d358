"""Classification of the Jobs owned by a JobSet."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from jobset_controller.models.common import JobConditionType
from jobset_controller.models.k8s import REPLICATED_JOB_NAME_KEY, RESTARTS_KEY, JobIdentity

if TYPE_CHECKING:
    from kubernetes.client import V1Job

    from jobset_controller.models.jobset import JobSet

logger = logging.getLogger(__name__)


@dataclass
class ChildJobs:
    """Jobs owned by a JobSet, split into four disjoint buckets.

    Built fresh on every reconciliation pass and never cached.
    """

    active: list[V1Job] = field(default_factory=list)
    successful: list[V1Job] = field(default_factory=list)
    failed: list[V1Job] = field(default_factory=list)
    delete: list[V1Job] = field(default_factory=list)

    def all(self) -> Iterator[V1Job]:
        """Iterate over every bucket."""
        yield from self.active
        yield from self.successful
        yield from self.failed
        yield from self.delete


def job_finished(job: V1Job) -> tuple[bool, str]:
    """Check whether a Job reached a terminal condition.

    Only Complete=True and Failed=True finish a Job. Suspended and
    FailureTarget conditions do not.

    Returns:
        Tuple of (finished, condition_type), condition_type is "" when the
        Job has not finished
    """
    if job.status is None or not job.status.conditions:
        return False, ""
    for condition in job.status.conditions:
        if condition.type in (JobConditionType.COMPLETE.value, JobConditionType.FAILED.value) and (
            condition.status == "True"
        ):
            return True, condition.type
    return False, ""


def job_restart_attempt(job: V1Job) -> int:
    """Restart attempt a Job was created for (0 when unlabeled)."""
    labels = job.metadata.labels if job.metadata and job.metadata.labels else {}
    try:
        return int(labels.get(RESTARTS_KEY, "0"))
    except ValueError:
        return 0


def replicated_job_name(job: V1Job) -> str | None:
    """Name of the ReplicatedJob a Job belongs to, from its labels."""
    if job.metadata is None or not job.metadata.labels:
        return None
    return job.metadata.labels.get(REPLICATED_JOB_NAME_KEY)


def outside_replicas(js: JobSet, job: V1Job) -> bool:
    """Whether a Job belongs to no current replica slot of the JobSet.

    True when its ReplicatedJob was removed from the JobSet or its index is
    at or beyond the group's replica count. Jobs without identity labels
    are left alone.
    """
    identity = JobIdentity.from_labels(job.metadata.labels if job.metadata else None)
    if identity is None:
        return False
    for rjob in js.spec.replicated_jobs:
        if rjob.name == identity.replicated_job_name:
            return identity.job_index >= rjob.replicas
    return True


def classify_jobs(js: JobSet, jobs: list[V1Job]) -> ChildJobs:
    """Split the Jobs owned by a JobSet into active/successful/failed/delete.

    A Job goes to ``delete`` when it is already being deleted, when it was
    created for an earlier restart attempt of the JobSet, or when its index
    is no longer within its ReplicatedJob's replicas. Otherwise it goes
    to ``successful`` or ``failed`` by its terminal condition, and to
    ``active`` if it has none.

    Args:
        js: The JobSet owning the Jobs
        jobs: Jobs currently owned by the JobSet

    Returns:
        ChildJobs with every Job in exactly one bucket
    """
    owned = ChildJobs()
    for job in jobs:
        if job.metadata is not None and job.metadata.deletion_timestamp is not None:
            owned.delete.append(job)
            continue

        if job_restart_attempt(job) < js.status.restarts:
            logger.debug(
                "Job %s belongs to restart attempt %d, JobSet is at %d",
                job.metadata.name,
                job_restart_attempt(job),
                js.status.restarts,
            )
            owned.delete.append(job)
            continue

        if outside_replicas(js, job):
            logger.debug(
                "Job %s is outside the replicas of JobSet %s", job.metadata.name, js.name
            )
            owned.delete.append(job)
            continue

        finished, condition_type = job_finished(job)
        if not finished:
            owned.active.append(job)
        elif condition_type == JobConditionType.COMPLETE.value:
            owned.successful.append(job)
        else:
            owned.failed.append(job)

    logger.debug(
        "JobSet %s/%s owns %d active, %d successful, %d failed, %d deleting jobs",
        js.namespace,
        js.name,
        len(owned.active),
        len(owned.successful),
        len(owned.failed),
        len(owned.delete),
    )
    return owned


def job_failure_time(job: V1Job) -> datetime | None:
    """Last transition time of a Job's Failed=True condition, if any."""
    if job.status is None or not job.status.conditions:
        return None
    for condition in job.status.conditions:
        if condition.type == JobConditionType.FAILED.value and condition.status == "True":
            return condition.last_transition_time
    return None


def find_first_failed_job(failed_jobs: list[V1Job]) -> V1Job | None:
    """Return the Job that failed first.

    Jobs without a Failed=True condition are ignored. Ties keep the Job that
    comes first in ``failed_jobs``.
    """
    first_job: V1Job | None = None
    first_time: datetime | None = None
    for job in failed_jobs:
        failure_time = job_failure_time(job)
        if failure_time is None:
            continue
        if first_time is None or failure_time < first_time:
            first_job = job
            first_time = failure_time
    return first_job
