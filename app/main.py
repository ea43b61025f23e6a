import hmac
import logging
import re
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes.health import router as health_router
from app.api.routes.images import router as images_router
from app.core.config import AppEnvironment, settings
from app.core.db import init_db
from app.core.errors import (
    GalleryError,
    UnauthorizedError,
    get_status_code,
)
from app.core.middleware import RequestSizeLimitMiddleware
from app.core.observability import (
    ObservabilityMiddleware,
    configure_structured_logging,
    extract_request_context,
    metrics_endpoint,
)
from app.core.request_logging import RequestLoggingMiddleware
from app.core.telemetry import (
    init_telemetry,
    instrument_fastapi,
    instrument_httpx,
    shutdown_telemetry,
)
from app.services.geocode import close_async_http_client

# Configure structured logging before creating logger
if settings.observability_structured_logs:
    configure_structured_logging(settings.app_log_level)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_SENSITIVE_PATTERNS = [
    r"[/\\][\w/-]+\.py",  # File paths
    r"SELECT.*FROM",  # SQL queries
    r"INSERT INTO.*VALUES",
    r"UPDATE.*SET",
    r"DELETE FROM",
    r"table\s*[:=]\s*\w+",  # Table references
]


def _sanitize_error_details(details: dict[str, Any]) -> dict[str, Any]:
    """
    Sanitize error details to prevent information leakage in production.

    Redacts file paths, SQL fragments and table references. Outside
    production the details are returned unchanged.

    Args:
        details: Original error details dictionary

    Returns:
        Sanitized details dictionary
    """
    if settings.app_env != AppEnvironment.PROD:
        return details

    sanitized = {}
    for key, value in details.items():
        if isinstance(value, str):
            if any(re.search(p, value, re.IGNORECASE) for p in _SENSITIVE_PATTERNS):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = value
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_error_details(value)
        elif isinstance(value, list):
            sanitized[key] = [
                _sanitize_error_details(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            sanitized[key] = value

    return sanitized


_HTTP_SECURITY_EVENTS = {
    status.HTTP_401_UNAUTHORIZED: "AUTH_FAILURE",
    status.HTTP_403_FORBIDDEN: "AUTHZ_FAILURE",
}


def _error_response(
    status_code: int,
    error: str,
    message: Any,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details or {}},
        headers=headers,
    )


def _log_security_event(
    request: Request,
    event_type: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> None:
    """Log a rejected credential or token with client and request context."""
    logger.warning(
        f"Security event: {event_type} on {request.method} {request.url.path}",
        extra={
            "security_event": True,
            "event_type": event_type,
            "client_ip": request.client.host if request.client else "unknown",
            "status_code": status_code,
            "user_agent": request.headers.get("user-agent", "unknown"),
            "details": details or {},
            **extract_request_context(request),
        },
    )


def _check_metrics_token(request: Request) -> None:
    """Raise 500 when METRICS_TOKEN is unset and 403 when the header does not match."""
    expected = settings.metrics_token
    if not expected:
        logger.error(
            "Metrics endpoint accessed but METRICS_TOKEN not configured",
            extra={"security_event": True, "event_type": "METRICS_NOT_CONFIGURED"},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Metrics token not configured. Set METRICS_TOKEN environment variable.",
        )

    if not hmac.compare_digest(request.headers.get("X-Metrics-Token", ""), expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid metrics token")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Sets up:
    - OpenTelemetry distributed tracing
    - Structured logging with correlation IDs
    - Database schema on startup
    - CORS middleware
    - Observability middleware (metrics, request tracking)
    - Upload size limit
    - Exception handlers for domain errors
    - API routers
    - Metrics endpoint for Prometheus scraping
    """
    app = FastAPI(
        title="Photo Gallery API",
        description="Photo gallery with cursor-based browsing and jump-to",
        version="0.1.0",
    )

    # ============================================================================
    # Startup / Shutdown
    # ============================================================================

    @app.on_event("startup")
    async def startup():
        """Initialize tracing and make sure the schema exists."""
        init_telemetry()
        instrument_fastapi(app)
        instrument_httpx()
        # SQLAlchemy instrumentation happens in app/core/db.py when the engine is created

        await init_db()

    @app.on_event("shutdown")
    async def shutdown_app():
        """Close outbound clients and flush traces."""
        await close_async_http_client()
        shutdown_telemetry()

    # ============================================================================
    # Middleware
    # ============================================================================

    # Observability (must be first for correlation tracking)
    if settings.observability_enabled:
        app.add_middleware(ObservabilityMiddleware)

    if settings.app_env in (AppEnvironment.LOCAL, AppEnvironment.TEST):
        app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestSizeLimitMiddleware, max_size_mb=settings.max_upload_mb)

    # ============================================================================
    # Exception Handlers
    # ============================================================================

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError) -> JSONResponse:
        """Render a domain error with the status its class maps to."""
        status_code = get_status_code(exc)
        name = type(exc).__name__

        headers = None
        if isinstance(exc, UnauthorizedError):
            _log_security_event(request, "AUTH_FAILURE", status_code, {"reason": exc.message})
            headers = {"WWW-Authenticate": 'Basic realm="gallery"'}
        elif status_code >= 400:
            log = logger.error if status_code >= 500 else logger.warning
            log(
                f"{name}: {exc.message}",
                extra={
                    "details": exc.details,
                    "path": request.url.path,
                    **extract_request_context(request),
                },
            )

        return _error_response(
            status_code, name, exc.message, _sanitize_error_details(exc.details), headers
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Token checks on health and metrics raise plain HTTP exceptions."""
        event_type = _HTTP_SECURITY_EVENTS.get(exc.status_code)
        if event_type:
            _log_security_event(request, event_type, exc.status_code, {"reason": str(exc.detail)})
        elif exc.status_code >= 500:
            logger.error(
                f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}",
                extra=extract_request_context(request),
            )

        return _error_response(exc.status_code, "HTTPException", exc.detail, headers=exc.headers)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Catch-all for unexpected exceptions.

        The traceback is logged; the client only sees a generic 500.
        """
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=True,
            extra=extract_request_context(request),
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "An unexpected error occurred",
        )

    # ============================================================================
    # Router Registration
    # ============================================================================

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(images_router, prefix=API_PREFIX)

    # ============================================================================
    # Metrics Endpoint (Prometheus) - Token Protected
    # ============================================================================

    async def protected_metrics(request: Request) -> Response:
        """Prometheus scrape endpoint; X-Metrics-Token must match METRICS_TOKEN."""
        _check_metrics_token(request)
        return metrics_endpoint()

    if settings.observability_enabled:
        app.add_route("/metrics", protected_metrics)

    return app


app = create_app()
