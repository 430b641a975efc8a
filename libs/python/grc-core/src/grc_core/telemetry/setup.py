"""OTel providers for the approval engine: OTLP traces and metrics, httpx spans."""

from __future__ import annotations

import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from grc_core.settings import OTelSettings

logger = logging.getLogger(__name__)

_METRIC_EXPORT_INTERVAL_MS = 15_000

_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None


def _tracing(resource: Resource, endpoint: str) -> TracerProvider:
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    return provider


def _metering(resource: Resource, endpoint: str) -> MeterProvider:
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint, insecure=True),
        export_interval_millis=_METRIC_EXPORT_INTERVAL_MS,
    )
    return MeterProvider(resource=resource, metric_readers=[reader])


def init_telemetry(service_name: str | None = None) -> None:
    """Install global tracer/meter providers exporting to the OTLP collector.

    Only the first call has an effect. With ``OTEL_ENABLED=false`` the no-op
    providers stay in place and approval metrics are silently dropped.
    """
    global _tracer_provider, _meter_provider

    if _tracer_provider is not None:
        return

    settings = OTelSettings()
    if not settings.enabled:
        logger.info("OTel telemetry disabled via OTEL_ENABLED=false")
        return

    name = service_name or settings.service_name
    resource = Resource.create({SERVICE_NAME: name})
    endpoint = settings.exporter_otlp_endpoint

    _tracer_provider = _tracing(resource, endpoint)
    trace.set_tracer_provider(_tracer_provider)
    _meter_provider = _metering(resource, endpoint)
    metrics.set_meter_provider(_meter_provider)

    # traceparent is copied into every published approval event
    set_global_textmap(CompositePropagator([TraceContextTextMapPropagator()]))
    HTTPXClientInstrumentor().instrument()

    logger.info("OTel telemetry for %s exporting to %s", name, endpoint)


def shutdown_telemetry() -> None:
    """Flush pending spans and metrics, then drop the providers."""
    global _tracer_provider, _meter_provider

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None

    if _meter_provider is not None:
        _meter_provider.shutdown()
        _meter_provider = None

    logger.info("OTel telemetry shut down")
