import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from quantsim.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI entry points."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def setup_telemetry(service_name: str = "quantsim", endpoint: Optional[str] = None) -> bool:
    """
    Sets up OpenTelemetry tracing with an OTLP/HTTP exporter.

    Spans emitted by the data sources and the engine are no-ops until this
    runs. Returns False (and leaves the no-op provider in place) when no
    endpoint is configured.
    """
    endpoint = (
        endpoint
        or settings.OTEL_EXPORTER_OTLP_ENDPOINT
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )

    if not endpoint:
        logger.info("Telemetry: OTLP endpoint not set. Skipping setup.")
        return False

    logger.info(f"Telemetry: initializing {service_name} at {endpoint}")

    resource = Resource(attributes={SERVICE_NAME: service_name})
    exporter = OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces")
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True
