"""Core modules for configuration, errors, time and telemetry."""

from jobset_controller.core.clock import Clock, FakeClock, SystemClock
from jobset_controller.core.config import Settings, get_settings
from jobset_controller.core.errors import (
    ConflictError,
    JobSetError,
    JobSetStateError,
    StoreError,
    TemplatingError,
)
from jobset_controller.core.telemetry import get_tracer, setup_telemetry

__all__ = [
    "Clock",
    "ConflictError",
    "FakeClock",
    "JobSetError",
    "JobSetStateError",
    "Settings",
    "StoreError",
    "SystemClock",
    "TemplatingError",
    "get_settings",
    "get_tracer",
    "setup_telemetry",
]
