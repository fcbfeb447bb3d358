"""OpenTelemetry tracing for reconciliation passes and resync cycles.

Every pass over a JobSet runs in a ``reconcile_jobset`` span and every full
resync in a ``resync_jobsets`` span. Both carry ``jobset.*`` attributes so
traces can be filtered by JobSet and by how much work a pass did.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

if TYPE_CHECKING:
    from fastapi import FastAPI

from jobset_controller import __version__
from jobset_controller.core.config import Settings

logger = logging.getLogger(__name__)

TRACER_NAME = "jobset_controller"
RECONCILE_SPAN = "reconcile_jobset"
RESYNC_SPAN = "resync_jobsets"
ATTRIBUTE_PREFIX = "jobset."


def _span_exporter(settings: Settings) -> SpanExporter | None:
    """Pick the exporter for the environment.

    Development prints spans only with ``debug`` set; other environments ship
    them to the OTLP collector.
    """
    if settings.environment == "development":
        return ConsoleSpanExporter() if settings.debug else None
    return OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)


def setup_telemetry(app: "FastAPI", settings: Settings) -> None:
    """Install the tracer provider and instrument the health and controller routes.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
                "deployment.environment": settings.environment,
                "jobset.watch_namespace": settings.watch_namespace or "*",
            }
        )
    )
    try:
        exporter = _span_exporter(settings)
    except Exception as e:
        logger.warning(f"Failed to configure span exporter: {e}")
        exporter = None
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)

    logger.info(
        f"OpenTelemetry configured: service={settings.otel_service_name}, "
        f"environment={settings.environment}, "
        f"exporter={type(exporter).__name__ if exporter else 'none'}"
    )


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """Get a tracer, by default the controller's own."""
    return trace.get_tracer(name)


def set_counts(span: trace.Span, **counts: int | bool) -> None:
    """Record pass or cycle counters as ``jobset.<name>`` span attributes."""
    span.set_attributes({f"{ATTRIBUTE_PREFIX}{key}": value for key, value in counts.items()})


@contextmanager
def reconcile_span(
    namespace: str, name: str, tracer: trace.Tracer | None = None
) -> Iterator[trace.Span]:
    """Span around one reconciliation pass of the JobSet ``namespace/name``."""
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(
        RECONCILE_SPAN,
        attributes={f"{ATTRIBUTE_PREFIX}namespace": namespace, f"{ATTRIBUTE_PREFIX}name": name},
    ) as span:
        yield span


@contextmanager
def resync_span(tracer: trace.Tracer | None = None) -> Iterator[trace.Span]:
    """Span around a full resync; passes started inside it become its children."""
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(RESYNC_SPAN) as span:
        yield span
