"""OpenTelemetry setup for the fleet agent."""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"


def init_telemetry(service_name: str = "fleet-agent", enable_console: bool = False) -> None:
    """Install tracer and meter providers.

    Without console export the providers still collect, so instrumentation
    stays cheap and never fails callers.

    Args:
        service_name: Name of the service for tracing
        enable_console: Whether to print spans and metrics to stdout
    """
    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: SERVICE_VERSION,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    readers = []

    if enable_console or os.getenv("OTEL_CONSOLE", "false").lower() == "true":
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))
        logger.info("Console telemetry enabled")

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    logger.info(f"Telemetry initialized for service: {service_name}")

