"""Aggregation of child Job status into per-ReplicatedJob counters."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from jobset_controller.models.jobset import ReplicatedJobStatus
from jobset_controller.services.child_jobs import replicated_job_name

if TYPE_CHECKING:
    from kubernetes.client import V1Job

    from jobset_controller.models.jobset import JobSet
    from jobset_controller.services.child_jobs import ChildJobs

logger = logging.getLogger(__name__)


def _reached_completions(job: V1Job) -> bool:
    completions = job.spec.completions if job.spec else None
    if completions is None:
        return False
    succeeded = (job.status.succeeded if job.status else None) or 0
    return succeeded >= completions


def calculate_replicated_job_statuses(js: JobSet, owned: ChildJobs) -> list[ReplicatedJobStatus]:
    """Compute the status counters of every ReplicatedJob from scratch.

    Over active Jobs, ``ready`` sums ready pods and ``active`` sums active
    pods of Jobs that are not suspended, while ``suspended`` counts suspended
    Jobs. Succeeded pods of an active Job only count once the Job has reached
    its ``completions`` target, so partial progress is not reported as
    success. Every failed Job adds one to ``failed`` and every successful Job
    adds one to ``succeeded``.

    Jobs that do not belong to one of the JobSet's ReplicatedJobs are ignored.

    Returns:
        One status per ReplicatedJob, including groups without Jobs, sorted
        by name
    """
    statuses = {rjob.name: ReplicatedJobStatus(name=rjob.name) for rjob in js.spec.replicated_jobs}

    for job in owned.active:
        status = statuses.get(replicated_job_name(job) or "")
        if status is None:
            continue
        job_status = job.status
        suspended = bool(job.spec.suspend) if job.spec else False

        if job_status is not None:
            status.ready += job_status.ready or 0
            if _reached_completions(job):
                status.succeeded += job_status.succeeded or 0
            if not suspended:
                status.active += job_status.active or 0
        if suspended:
            status.suspended += 1

    for job in owned.failed:
        status = statuses.get(replicated_job_name(job) or "")
        if status is not None:
            status.failed += 1

    for job in owned.successful:
        status = statuses.get(replicated_job_name(job) or "")
        if status is not None:
            status.succeeded += 1

    return sorted(statuses.values(), key=lambda s: s.name)
