"""
Observability module for the photo gallery.

Provides:
- Structured logging with JSON format and correlation IDs
- Request correlation ID (request_id) generation and propagation
- Prometheus metrics collection (HTTP, DB, pagination)
- Request tracking middleware for latency and status codes

Usage:
    from app.core.observability import (
        get_request_id,
        set_correlation_id,
        metrics,
    )
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from fastapi import Request, Response
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.telemetry import get_span_id, get_trace_id

_request_logger = logging.getLogger("app.request")

# ============================================================================
# Context Variables for Request Tracking
# ============================================================================

# Correlation ID - links all logs for a single request
_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

# Basic-auth username of the current admin, if any
_user_id_ctx: ContextVar[str] = ContextVar("user_id", default="")


def generate_request_id() -> str:
    """Generate a unique request ID for correlation."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_ctx.get()


def set_correlation_id(request_id: str) -> None:
    """Set the correlation ID for the current request context."""
    _request_id_ctx.set(request_id)


def get_user_id() -> str:
    """Get the current user ID from context."""
    return _user_id_ctx.get()


def set_user_id(user_id: str) -> None:
    """Set the user ID for the current request context."""
    _user_id_ctx.set(user_id)


# ============================================================================
# Structured Logging Configuration
# ============================================================================

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as JSON with standard fields:
    - timestamp: ISO 8601 format
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - request_id: Correlation ID (if available)
    - trace_id / span_id: OpenTelemetry context (if available)
    - user_id: Authenticated admin (if available)
    - extra: Any additional context from logging.extra
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_entry["request_id"] = request_id

        trace_id = get_trace_id()
        if trace_id:
            log_entry["trace_id"] = trace_id
            log_entry["span_id"] = get_span_id()

        user_id = get_user_id()
        if user_id:
            log_entry["user_id"] = user_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        log_entry["file"] = record.pathname
        log_entry["line"] = record.lineno
        log_entry["function"] = record.funcName

        extra_keys = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_KEYS}
        if extra_keys:
            log_entry["extra"] = extra_keys

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: str = "INFO") -> None:
    """
    Configure root logger with structured JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())

    root_logger.addHandler(handler)


# ============================================================================
# Prometheus Metrics
# ============================================================================

# Use a custom registry to avoid conflicts with other Prometheus metrics
_registry = CollectorRegistry()


class Metrics:
    """
    Centralized metrics collection for the application.

    Metrics groups:
    - HTTP: Request rate, errors, latency
    - Database: Query timing
    - Gallery: Pages served, cursor failures, neighbor fetch failures
    """

    def __init__(self, registry: CollectorRegistry) -> None:
        self.registry = registry

        # -------------------------------------------------------------------
        # HTTP Metrics
        # -------------------------------------------------------------------

        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )

        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency in seconds",
            ["method", "route"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

        self.http_requests_in_progress = Gauge(
            "http_requests_in_progress",
            "HTTP requests currently in progress",
            ["method", "route"],
            registry=self.registry,
        )

        self.http_errors_total = Counter(
            "http_errors_total",
            "Total HTTP errors",
            ["error_type", "method", "route"],
            registry=self.registry,
        )

        # -------------------------------------------------------------------
        # Database Metrics
        # -------------------------------------------------------------------

        self.db_query_duration_seconds = Histogram(
            "db_query_duration_seconds",
            "Database query duration in seconds",
            ["operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )

        self.db_queries_total = Counter(
            "db_queries_total",
            "Total database queries",
            ["operation", "status"],
            registry=self.registry,
        )

        # -------------------------------------------------------------------
        # Gallery Metrics
        # -------------------------------------------------------------------

        # Pages served by paging mode (ByOffset / BySeekKey)
        self.gallery_pages_total = Counter(
            "gallery_pages_total",
            "Total gallery pages fetched",
            ["mode"],
            registry=self.registry,
        )

        self.gallery_cursor_errors_total = Counter(
            "gallery_cursor_errors_total",
            "Total cursors rejected as invalid",
            registry=self.registry,
        )

        self.gallery_neighbor_failures_total = Counter(
            "gallery_neighbor_failures_total",
            "Total neighbor page fetches dropped after a storage failure",
            ["side"],
            registry=self.registry,
        )


# Global metrics instance
metrics = Metrics(_registry)


# ============================================================================
# Middleware
# ============================================================================


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Correlation ids, request metrics and one access log line per request.

    An incoming X-Request-ID is reused so ids survive a proxy; otherwise a
    new one is generated. Health, readiness and metrics routes are counted
    but not logged.
    """

    def __init__(
        self,
        app: ASGIApp,
        metrics_instance: Metrics | None = None,
        skip_paths: list[str] | None = None,
        request_id_header: str = "X-Request-ID",
    ) -> None:
        super().__init__(app)
        self.metrics = metrics_instance or metrics
        self.skip_paths = tuple(skip_paths or ["/api/v1/health", "/api/v1/readyz", "/metrics"])
        self.request_id_header = request_id_header

    def _observe(self, method: str, route: str, status_code: int, started: float) -> float:
        elapsed = time.perf_counter() - started
        self.metrics.http_requests_total.labels(
            method=method, route=route, status_code=status_code
        ).inc()
        self.metrics.http_request_duration_seconds.labels(method=method, route=route).observe(
            elapsed
        )
        return round(elapsed * 1000, 2)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.request_id_header) or generate_request_id()
        set_correlation_id(request_id)
        set_user_id("")

        method = request.method
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        in_progress = self.metrics.http_requests_in_progress.labels(method=method, route=route)
        in_progress.inc()
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            error_type = type(e).__name__
            latency_ms = self._observe(method, route, 500, started)
            self.metrics.http_errors_total.labels(
                error_type=error_type, method=method, route=route
            ).inc()
            _request_logger.error(
                f"{method} {route} failed with {error_type}: {e}",
                extra={"route": route, "status_code": 500, "latency_ms": latency_ms},
                exc_info=True,
            )
            raise
        finally:
            in_progress.dec()

        latency_ms = self._observe(method, route, response.status_code, started)
        response.headers[self.request_id_header] = request_id

        if not route.startswith(self.skip_paths):
            _request_logger.info(
                f"{method} {route} {response.status_code}",
                extra={
                    "route": route,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                },
            )
        return response


# ============================================================================
# Database Metrics Helper
# ============================================================================


class DBMetricsWrapper:
    """
    Wrapper to track database query metrics.

    Usage in repos:
        with db_metrics.track("seek_images"):
            result = await db.execute(stmt)
    """

    def __init__(self, metrics_instance: Metrics | None = None) -> None:
        self.metrics = metrics_instance or metrics

    @contextmanager
    def track(self, operation: str):
        """
        Context manager to track database operation metrics.

        Args:
            operation: Name of the operation (e.g., "seek_images", "get_image")
        """
        start = time.time()
        status = "success"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            duration = time.time() - start
            self.metrics.db_query_duration_seconds.labels(operation=operation).observe(duration)
            self.metrics.db_queries_total.labels(operation=operation, status=status).inc()


# Global DB metrics wrapper
db_metrics = DBMetricsWrapper()


# ============================================================================
# Metrics Endpoint
# ============================================================================


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


def extract_request_context(request: Request) -> dict[str, Any]:
    """
    Extract observability context from request for logging.

    Args:
        request: FastAPI Request object

    Returns:
        Dictionary with request_id and user_id
    """
    return {
        "request_id": get_request_id(),
        "user_id": get_user_id() or "anonymous",
    }
