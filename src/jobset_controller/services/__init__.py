"""Service layer for JobSet reconciliation."""

from jobset_controller.services.child_jobs import ChildJobs, classify_jobs, find_first_failed_job
from jobset_controller.services.conditions import ConditionUpdate, update_condition
from jobset_controller.services.controller import (
    ControllerMetrics,
    JobSetController,
    get_jobset_controller,
)
from jobset_controller.services.job_builder import (
    construct_job,
    construct_jobs_from_template,
    gen_job_name,
)
from jobset_controller.services.k8s_store import K8sJobSetStore, get_k8s_jobset_store
from jobset_controller.services.placement import PlacementRequest, PlacementScope
from jobset_controller.services.reconciler import JobSetReconciler, ReconcileResult
from jobset_controller.services.startup_policy import StartupPlan, plan_startup
from jobset_controller.services.status import calculate_replicated_job_statuses
from jobset_controller.services.ttl import jobset_finish_time, time_left

__all__ = [
    "ChildJobs",
    "ConditionUpdate",
    "ControllerMetrics",
    "JobSetController",
    "JobSetReconciler",
    "K8sJobSetStore",
    "PlacementRequest",
    "PlacementScope",
    "ReconcileResult",
    "StartupPlan",
    "calculate_replicated_job_statuses",
    "classify_jobs",
    "construct_job",
    "construct_jobs_from_template",
    "find_first_failed_job",
    "gen_job_name",
    "get_jobset_controller",
    "get_k8s_jobset_store",
    "jobset_finish_time",
    "plan_startup",
    "time_left",
    "update_condition",
]
