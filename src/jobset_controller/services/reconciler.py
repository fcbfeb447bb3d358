"""Reconciliation of a single JobSet.

One pass reads the JobSet and its Jobs, recomputes everything from scratch
and issues the writes needed to move the cluster toward the desired state:

1. classify owned Jobs;
2. finished JobSets only go through TTL cleanup;
3. delete Jobs left over from earlier restart attempts;
4. recompute per-ReplicatedJob status;
5. apply the failure policy (restart or fail) or the success policy;
6. ensure the headless Service when DNS hostnames are enabled;
7. suspend active Jobs, or resume those the startup policy releases;
8. create missing Jobs for the ReplicatedJobs the startup policy releases;
9. persist status if anything changed.

Passes are idempotent: running one again on an unchanged cluster issues no
writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from jobset_controller.core.clock import Clock, SystemClock
from jobset_controller.core.errors import TemplatingError
from jobset_controller.core.telemetry import reconcile_span, set_counts
from jobset_controller.models.common import JobSetConditionType
from jobset_controller.services.child_jobs import classify_jobs
from jobset_controller.services.conditions import (
    ConditionUpdate,
    apply_condition,
    completed_condition,
    resumed_condition,
    startup_completed_condition,
    startup_in_progress_condition,
    suspended_condition,
)
from jobset_controller.services.job_builder import (
    construct_jobs_from_template,
    dns_hostnames_enabled,
)
from jobset_controller.services.k8s_store import K8sJobSetStore, get_k8s_jobset_store
from jobset_controller.services.policies import decide_failure, success_policy_satisfied
from jobset_controller.services.startup_policy import plan_startup
from jobset_controller.services.status import calculate_replicated_job_statuses
from jobset_controller.services.ttl import time_left

if TYPE_CHECKING:
    from kubernetes.client import V1Job

    from jobset_controller.models.jobset import JobSet
    from jobset_controller.services.child_jobs import ChildJobs
    from jobset_controller.services.startup_policy import StartupPlan

logger = logging.getLogger(__name__)

TEMPLATING_FAILED_REASON = "TemplatingFailed"
RESTART_REASON = "RestartJobSet"


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    Attributes:
        requeue_after: When to reconcile this JobSet again, if at all
        created_jobs: Jobs created in this pass
        deleted_jobs: Jobs deleted in this pass
        status_updated: Whether the JobSet status was written
    """

    requeue_after: timedelta | None = None
    created_jobs: int = 0
    deleted_jobs: int = 0
    status_updated: bool = False


class JobSetReconciler:
    """Drives one JobSet's Jobs toward its spec and derives its status.

    Example:
        ```python
        reconciler = JobSetReconciler()
        result = reconciler.reconcile("default", "trainer")
        if result.requeue_after:
            schedule(result.requeue_after)
        ```
    """

    def __init__(
        self,
        store: K8sJobSetStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Optional K8sJobSetStore instance
            clock: Time source for conditions and TTLs (defaults to UTC wall time)
        """
        self._store = store
        self.clock = clock or SystemClock()

    @property
    def store(self) -> K8sJobSetStore:
        """Get the store instance."""
        if self._store is None:
            self._store = get_k8s_jobset_store()
        return self._store

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation pass for the JobSet ``namespace/name``.

        Raises:
            StoreError: If a read or write against the API fails
            JobSetStateError: If a finished JobSet has no finish time
        """
        with reconcile_span(namespace, name) as span:
            js = self.store.get_jobset(namespace, name)
            if js is None:
                logger.debug("JobSet %s/%s not found, nothing to do", namespace, name)
                return ReconcileResult()
            if js.metadata.deletion_timestamp is not None:
                logger.debug("JobSet %s/%s is being deleted", namespace, name)
                return ReconcileResult()

            result = self._reconcile(js)
            set_counts(
                span,
                created_jobs=result.created_jobs,
                deleted_jobs=result.deleted_jobs,
                status_updated=result.status_updated,
                requeued=result.requeue_after is not None,
            )
            return result

    def _reconcile(self, js: JobSet) -> ReconcileResult:
        result = ReconcileResult()
        owned = classify_jobs(js, self.store.list_child_jobs(js))

        if js.finished:
            result.requeue_after = self._execute_ttl_policy(js)
            return result

        result.deleted_jobs += self._delete_jobs(owned.delete)

        status_changed = False
        statuses = calculate_replicated_job_statuses(js, owned)
        if statuses != js.status.replicated_jobs_status:
            js.status.replicated_jobs_status = statuses
            status_changed = True

        if owned.failed:
            status_changed |= self._execute_failure_policy(js, owned, result)
            self._persist_status(js, status_changed, result)
            return result

        if success_policy_satisfied(js, owned):
            logger.info("JobSet %s/%s completed", js.namespace, js.name)
            status_changed |= self._set_condition(js, completed_condition())
            self._persist_status(js, status_changed, result)
            return result

        if dns_hostnames_enabled(js):
            self.store.ensure_headless_service(js)

        plan = plan_startup(js, owned)
        if js.suspended:
            status_changed |= self._suspend_jobs(js, owned.active)
        else:
            status_changed |= self._resume_jobs(js, owned.active, plan)

        status_changed |= self._create_jobs(js, owned, plan, result)
        self._persist_status(js, status_changed, result)
        return result

    def _execute_ttl_policy(self, js: JobSet) -> timedelta | None:
        remaining = time_left(js, self.clock.now())
        if remaining is None:
            return None
        if remaining > timedelta(0):
            logger.debug("JobSet %s/%s expires in %s", js.namespace, js.name, remaining)
            return remaining
        logger.info("JobSet %s/%s reached its TTL after finishing, deleting", js.namespace, js.name)
        self.store.delete_jobset(js)
        return None

    def _execute_failure_policy(
        self, js: JobSet, owned: ChildJobs, result: ReconcileResult
    ) -> bool:
        decision = decide_failure(js, owned)
        if not decision.restart:
            assert decision.condition is not None
            logger.info(
                "JobSet %s/%s failed: %s",
                js.namespace,
                js.name,
                decision.condition.condition.message,
            )
            return self._set_condition(js, decision.condition)

        js.status.restarts += 1
        logger.info(
            "Restarting JobSet %s/%s, attempt %d", js.namespace, js.name, js.status.restarts
        )
        self.store.record_event(
            js, "Warning", RESTART_REASON, f"restarting jobset, attempt {js.status.restarts}"
        )
        result.deleted_jobs += self._delete_jobs([*owned.active, *owned.successful, *owned.failed])
        return True

    def _suspend_jobs(self, js: JobSet, active: list[V1Job]) -> bool:
        for job in active:
            if not (job.spec and job.spec.suspend):
                self.store.set_job_suspend(job, True)
        return self._set_condition(js, suspended_condition())

    def _resume_jobs(self, js: JobSet, active: list[V1Job], plan: StartupPlan) -> bool:
        for job in active:
            if job.spec and job.spec.suspend and plan.releases(job):
                self.store.set_job_suspend(job, False)
        if js.has_true_condition(JobSetConditionType.SUSPENDED):
            return self._set_condition(js, resumed_condition())
        return False

    def _create_jobs(
        self, js: JobSet, owned: ChildJobs, plan: StartupPlan, result: ReconcileResult
    ) -> bool:
        try:
            for rjob in plan.replicated_jobs:
                for job in construct_jobs_from_template(js, rjob, owned):
                    if self.store.create_job(job):
                        result.created_jobs += 1
        except TemplatingError as e:
            logger.error("Cannot construct jobs for JobSet %s/%s: %s", js.namespace, js.name, e)
            self.store.record_event(js, "Warning", TEMPLATING_FAILED_REASON, str(e))
            return False

        if not plan.in_order:
            return False
        if plan.completed:
            return self._set_condition(js, startup_completed_condition())
        return self._set_condition(js, startup_in_progress_condition())

    def _delete_jobs(self, jobs: list[V1Job]) -> int:
        deleted = 0
        for job in jobs:
            if job.metadata.deletion_timestamp is not None:
                continue
            self.store.delete_job(job)
            deleted += 1
        return deleted

    def _set_condition(self, js: JobSet, update: ConditionUpdate) -> bool:
        changed = apply_condition(js, update, self.clock.now())
        if changed:
            self.store.record_event(
                js,
                update.event_type,
                update.condition.reason,
                update.condition.message,
            )
        return changed

    def _persist_status(self, js: JobSet, changed: bool, result: ReconcileResult) -> None:
        if not changed:
            return
        self.store.update_jobset_status(js)
        result.status_updated = True
