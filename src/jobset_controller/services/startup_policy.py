"""In-order startup of ReplicatedJobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from jobset_controller.models.common import JobSetConditionType, StartupPolicyOrder
from jobset_controller.services.child_jobs import replicated_job_name

if TYPE_CHECKING:
    from kubernetes.client import V1Job

    from jobset_controller.models.jobset import JobSet, ReplicatedJob
    from jobset_controller.services.child_jobs import ChildJobs


@dataclass
class StartupPlan:
    """ReplicatedJobs allowed to create or resume Jobs in this pass.

    Attributes:
        replicated_jobs: Groups whose Jobs may be created or resumed
        in_order: Whether the in-order policy is being enforced
        completed: Whether every group has started
    """

    replicated_jobs: list[ReplicatedJob] = field(default_factory=list)
    in_order: bool = False
    completed: bool = False

    def releases(self, job: V1Job) -> bool:
        """Whether ``job`` belongs to a released ReplicatedJob."""
        return any(rjob.name == replicated_job_name(job) for rjob in self.replicated_jobs)


def in_order_startup(js: JobSet) -> bool:
    policy = js.spec.startup_policy
    return policy is not None and policy.startup_policy_order == StartupPolicyOrder.IN_ORDER


def job_started(job: V1Job) -> bool:
    """Whether all of a Job's expected pods are ready or have succeeded.

    The expected pod count is ``parallelism`` (default 1), capped by
    ``completions`` when that is smaller.
    """
    spec = job.spec
    expected = spec.parallelism if spec and spec.parallelism is not None else 1
    if spec and spec.completions is not None:
        expected = min(expected, spec.completions)
    status = job.status
    if status is None:
        return expected == 0
    return (status.ready or 0) + (status.succeeded or 0) >= expected


def replicated_job_started(rjob: ReplicatedJob, owned: ChildJobs) -> bool:
    """Whether every Job of ``rjob`` exists and has started (or succeeded)."""
    started = sum(
        1 for job in owned.active if replicated_job_name(job) == rjob.name and job_started(job)
    )
    started += sum(1 for job in owned.successful if replicated_job_name(job) == rjob.name)
    return started >= rjob.replicas


def plan_startup(js: JobSet, owned: ChildJobs) -> StartupPlan:
    """Decide which ReplicatedJobs may create or resume Jobs in this pass.

    Without the in-order policy, or while the JobSet is suspended, every
    group may; Jobs built while suspended are created suspended. With it,
    groups are released in spec order: a group is released once every
    earlier group has fully started. This also gates resuming the Jobs of
    a JobSet that was created suspended. After all groups have started once
    (StartupPolicyCompleted=True), the policy no longer gates anything.
    """
    rjobs = list(js.spec.replicated_jobs)
    if not in_order_startup(js) or js.suspended:
        return StartupPlan(replicated_jobs=rjobs)

    if js.has_true_condition(JobSetConditionType.STARTUP_POLICY_COMPLETED):
        return StartupPlan(replicated_jobs=rjobs, in_order=True, completed=True)

    released: list[ReplicatedJob] = []
    for rjob in rjobs:
        released.append(rjob)
        if not replicated_job_started(rjob, owned):
            return StartupPlan(replicated_jobs=released, in_order=True, completed=False)
    return StartupPlan(replicated_jobs=released, in_order=True, completed=True)
