"""Health check endpoints for Kubernetes probes and monitoring."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jobset_controller import __version__
from jobset_controller.core.config import Settings, get_settings
from jobset_controller.services.controller import get_jobset_controller

SettingsDep = Annotated[Settings, Depends(get_settings)]

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Basic health check for liveness probe.

    Returns minimal information to confirm the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: SettingsDep) -> ReadinessResponse:
    """Readiness check for Kubernetes readiness probe.

    The controller is ready once its resync loop is running, or when it is
    disabled in settings.
    """
    checks: dict[str, Any] = {}
    controller = get_jobset_controller()

    if settings.controller_enabled:
        checks["controller"] = {
            "status": "ok" if controller.is_running else "error",
            "resyncIntervalSeconds": settings.resync_interval_seconds,
        }
    else:
        checks["controller"] = {"status": "ok", "enabled": False}

    last = controller.get_last_metrics()
    checks["last_resync"] = {
        "status": "ok" if last is None or not last.errors else "degraded",
        "timestamp": last.timestamp.isoformat() if last else None,
    }

    # Degraded resyncs do not make the pod unready
    all_ok = all(
        check.get("status") in ("ok", "degraded")
        for check in checks.values()
        if isinstance(check, dict)
    )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe.

    Simple endpoint that returns once the application has started.
    """
    return {"status": "started"}
