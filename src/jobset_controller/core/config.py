"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOBSET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "JobSet Controller"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Server (health probes and controller API)
    host: str = "0.0.0.0"
    port: int = 8081

    # OpenTelemetry
    otel_enabled: bool = True
    otel_service_name: str = "jobset-controller"
    otel_exporter_endpoint: str = "http://localhost:4317"

    # JobSet custom resource
    jobset_group: str = "jobset.x-k8s.io"
    jobset_version: str = "v1alpha2"
    jobset_plural: str = "jobsets"
    watch_namespace: str | None = None  # None watches every namespace

    # Reconciliation controller
    controller_enabled: bool = True
    resync_interval_seconds: int = 30  # Full resync of all JobSets
    max_concurrent_reconciles: int = 4
    conflict_requeue_seconds: float = 1.0  # Retry delay after a stale status write


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
