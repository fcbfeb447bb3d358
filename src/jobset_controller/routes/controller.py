"""Controller routes for inspecting and driving JobSet reconciliation."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from jobset_controller.core.config import get_settings
from jobset_controller.core.errors import JobSetError
from jobset_controller.services.controller import ControllerMetrics, get_jobset_controller

router = APIRouter(prefix="/api/v1/controller", tags=["Controller"])


class ControllerMetricsResponse(BaseModel):
    """Response model for controller metrics."""

    timestamp: str
    jobsets_checked: int = Field(alias="jobsetsChecked")
    jobsets_reconciled: int = Field(alias="jobsetsReconciled")
    jobs_created: int = Field(alias="jobsCreated")
    jobs_deleted: int = Field(alias="jobsDeleted")
    requeued: int
    errors: list[str]
    duration_seconds: float = Field(alias="durationSeconds")

    class Config:
        populate_by_name = True


class ControllerConfigResponse(BaseModel):
    """Response model for controller configuration."""

    enabled: bool
    running: bool
    resync_interval_seconds: int = Field(alias="resyncIntervalSeconds")
    max_concurrent_reconciles: int = Field(alias="maxConcurrentReconciles")
    watch_namespace: str | None = Field(alias="watchNamespace")
    pending_requeues: list[str] = Field(alias="pendingRequeues")

    class Config:
        populate_by_name = True


class ReconcileResponse(BaseModel):
    """Response model for a single reconciliation pass."""

    namespace: str
    name: str
    conflict: bool = False
    requeue_after_seconds: float | None = Field(default=None, alias="requeueAfterSeconds")
    created_jobs: int = Field(default=0, alias="createdJobs")
    deleted_jobs: int = Field(default=0, alias="deletedJobs")
    status_updated: bool = Field(default=False, alias="statusUpdated")

    class Config:
        populate_by_name = True


def _metrics_to_dict(metrics: ControllerMetrics) -> dict:
    return {
        "timestamp": metrics.timestamp.isoformat(),
        "jobsetsChecked": metrics.jobsets_checked,
        "jobsetsReconciled": metrics.jobsets_reconciled,
        "jobsCreated": metrics.jobs_created,
        "jobsDeleted": metrics.jobs_deleted,
        "requeued": metrics.requeued,
        "errors": metrics.errors,
        "durationSeconds": metrics.duration_seconds,
    }


@router.post("/resync", response_model=ControllerMetricsResponse)
async def trigger_resync() -> dict:
    """Manually trigger a resync cycle.

    Reconciles every JobSet immediately instead of waiting for the next
    scheduled run.
    """
    controller = get_jobset_controller()
    try:
        metrics = await controller.run_resync_cycle()
    except JobSetError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return _metrics_to_dict(metrics)


@router.post("/reconcile/{namespace}/{name}", response_model=ReconcileResponse)
async def reconcile_jobset(namespace: str, name: str) -> dict:
    """Run one reconciliation pass for a single JobSet.

    Args:
        namespace: Namespace of the JobSet
        name: Name of the JobSet
    """
    controller = get_jobset_controller()
    try:
        result = await controller.reconcile(namespace, name)
    except JobSetError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    if result is None:
        return {"namespace": namespace, "name": name, "conflict": True}

    return {
        "namespace": namespace,
        "name": name,
        "requeueAfterSeconds": (
            result.requeue_after.total_seconds() if result.requeue_after is not None else None
        ),
        "createdJobs": result.created_jobs,
        "deletedJobs": result.deleted_jobs,
        "statusUpdated": result.status_updated,
    }


@router.get("/metrics", response_model=ControllerMetricsResponse | None)
async def get_controller_metrics() -> dict | None:
    """Get metrics from the last resync cycle.

    Returns null if no resync has run yet.
    """
    metrics = get_jobset_controller().get_last_metrics()
    if metrics is None:
        return None
    return _metrics_to_dict(metrics)


@router.get("/config", response_model=ControllerConfigResponse)
async def get_controller_config() -> dict:
    """Get current controller configuration."""
    settings = get_settings()
    controller = get_jobset_controller()

    return {
        "enabled": settings.controller_enabled,
        "running": controller.is_running,
        "resyncIntervalSeconds": settings.resync_interval_seconds,
        "maxConcurrentReconciles": settings.max_concurrent_reconciles,
        "watchNamespace": settings.watch_namespace,
        "pendingRequeues": controller.pending_requeues,
    }
