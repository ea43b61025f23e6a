"""
OpenTelemetry distributed tracing for the photo gallery.

This module provides automatic instrumentation for:
- FastAPI (HTTP requests/responses)
- SQLAlchemy (database queries, including keyset seeks)
- HTTPX (outbound reverse geocoding calls)

Configuration via environment variables:
- OTEL_ENABLED: Enable/disable tracing (default: false)
- OTEL_SERVICE_NAME: Service name for traces (default: photo-gallery)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP collector endpoint (default: http://localhost:4317)
- OTEL_EXPORTER_OTLP_HEADERS: Optional headers for OTLP exporter
- OTEL_TRACES_SAMPLER: Sampling strategy (default: parent_trace_always)
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0)

Usage:
    from app.core.telemetry import init_telemetry, shutdown_telemetry

    # On application startup
    init_telemetry()

    # On application shutdown
    shutdown_telemetry()
"""

import logging
from collections.abc import Callable
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    Sampler,
    TraceIdRatioBased,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

# Global tracer provider reference for shutdown
_tracer_provider: TracerProvider | None = None


def _parse_headers(headers_string: str | None) -> dict[str, str]:
    """
    Parse OTLP headers from environment variable format.

    Args:
        headers_string: Headers in format "key1=value1,key2=value2"

    Returns:
        Dictionary of headers
    """
    if not headers_string:
        return {}

    headers = {}
    for pair in headers_string.split(","):
        key, sep, value = pair.strip().partition("=")
        if sep:
            headers[key.strip()] = value.strip()
    return headers


def _build_sampler(sampler_name: str, sampler_arg: float) -> Sampler:
    """
    Map an OTEL_TRACES_SAMPLER name onto a sampler.

    Supported: always_on, always_off, traceidratio, parent_trace_always (default).
    """
    if sampler_name == "always_on":
        return ALWAYS_ON
    if sampler_name == "always_off":
        return ALWAYS_OFF
    if sampler_name == "traceidratio":
        return TraceIdRatioBased(sampler_arg)
    return ParentBased(root=TraceIdRatioBased(sampler_arg))


def init_telemetry(
    service_name: str | None = None,
    app_env: str | None = None,
    otlp_endpoint: str | None = None,
    otlp_headers: str | None = None,
    sampler_name: str | None = None,
    sampler_arg: float | None = None,
) -> TracerProvider | None:
    """
    Initialize OpenTelemetry distributed tracing.

    Sets up the tracer provider with a resource describing the gallery
    service and a batched OTLP gRPC exporter. Arguments default to the
    OTEL_* settings.

    Returns:
        TracerProvider instance if enabled, None otherwise
    """
    global _tracer_provider

    if not settings.otel_enabled:
        logger.info("OpenTelemetry tracing is disabled (OTEL_ENABLED=false)")
        return None

    service_name = service_name or settings.otel_service_name
    app_env = app_env or settings.app_env.value
    otlp_endpoint = otlp_endpoint or settings.otel_exporter_otlp_endpoint
    otlp_headers = otlp_headers or settings.otel_exporter_otlp_headers
    sampler_name = sampler_name or settings.otel_traces_sampler
    sampler_arg = sampler_arg if sampler_arg is not None else settings.otel_traces_sampler_arg

    try:
        resource = Resource.create(
            {
                SERVICE_NAME: service_name,
                DEPLOYMENT_ENVIRONMENT: app_env,
                "service.version": "0.1.0",
            }
        )

        tracer_provider = TracerProvider(
            resource=resource, sampler=_build_sampler(sampler_name, sampler_arg)
        )

        span_exporter: SpanExporter = OTLPSpanExporter(
            endpoint=otlp_endpoint,
            headers=_parse_headers(otlp_headers),
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))

        trace.set_tracer_provider(tracer_provider)
        _tracer_provider = tracer_provider

        logger.info(
            f"OpenTelemetry initialized: service={service_name}, "
            f"environment={app_env}, endpoint={otlp_endpoint}, sampler={sampler_name}"
        )
        return tracer_provider

    except Exception as e:
        logger.error(f"Failed to initialize OpenTelemetry: {e}", exc_info=True)
        return None


def _instrument(component: str, instrument: Callable[[], None]) -> None:
    if not settings.otel_enabled:
        logger.debug(f"OpenTelemetry disabled - skipping {component} instrumentation")
        return

    try:
        instrument()
        logger.info(f"{component} instrumentation enabled")
    except Exception as e:
        logger.error(f"Failed to instrument {component}: {e}", exc_info=True)


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application with OpenTelemetry."""
    _instrument("FastAPI", lambda: FastAPIInstrumentor.instrument_app(app))


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument a SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: Sync SQLAlchemy engine (``AsyncEngine.sync_engine`` for async engines)
    """
    _instrument(
        "SQLAlchemy",
        lambda: SQLAlchemyInstrumentor().instrument(engine=engine, enable_commenter=True),
    )


def instrument_httpx() -> None:
    """Instrument all HTTPX clients (the geocoder) for outbound tracing."""
    _instrument("HTTPX", HTTPXClientInstrumentor().instrument)


def shutdown_telemetry() -> None:
    """
    Shutdown OpenTelemetry tracer provider gracefully.

    Flushes all pending spans. Called on application shutdown.
    """
    global _tracer_provider

    if _tracer_provider is None:
        logger.debug("OpenTelemetry tracer provider not initialized")
        return

    try:
        logger.info("Shutting down OpenTelemetry tracer provider")
        _tracer_provider.shutdown()
        _tracer_provider = None
    except Exception as e:
        logger.error(f"Error during OpenTelemetry shutdown: {e}", exc_info=True)


def get_tracer(name: str) -> trace.Tracer:
    """Tracer for manual spans; a no-op tracer while tracing is disabled."""
    return trace.get_tracer(name)


def _current_span_context() -> trace.SpanContext | None:
    current_span = trace.get_current_span()
    # NonRecordingSpan is used when no span is active
    if current_span is None or not current_span.is_recording():
        return None
    span_context = current_span.get_span_context()
    if span_context is None or not span_context.is_valid:
        return None
    return span_context


def get_trace_id() -> str | None:
    """
    Get the current trace ID from OpenTelemetry context.

    Returns:
        Trace ID as hex string, or None if no active span
    """
    span_context = _current_span_context()
    return format(span_context.trace_id, "032x") if span_context else None


def get_span_id() -> str | None:
    """
    Get the current span ID from OpenTelemetry context.

    Returns:
        Span ID as hex string, or None if no active span
    """
    span_context = _current_span_context()
    return format(span_context.span_id, "016x") if span_context else None
