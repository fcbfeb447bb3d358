"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jobset_controller import __version__
from jobset_controller.core.config import get_settings
from jobset_controller.core.telemetry import setup_telemetry
from jobset_controller.routes import controller_router, health_router
from jobset_controller.services.controller import get_jobset_controller

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    controller = get_jobset_controller()

    # Startup
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    if settings.watch_namespace:
        logger.info(f"Watching JobSets in namespace {settings.watch_namespace}")
    else:
        logger.info("Watching JobSets in all namespaces")

    await controller.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await controller.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="JobSet controller - runs groups of Kubernetes Jobs as one workload",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Setup OpenTelemetry
    setup_telemetry(app, settings)

    # Include routers
    app.include_router(health_router)
    app.include_router(controller_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "jobset_controller.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
