"""
Request/Response logging middleware for API calls.

Logs API requests and responses in a structured JSON format for
debugging in local and test environments. Image uploads and file
downloads are summarized by content type and size instead of logged.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import settings
from app.core.observability import get_request_id, get_user_id

logger = logging.getLogger("app.api")

# Sensitive headers that should be redacted
SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-health-token",
    "x-metrics-token",
}

# Sensitive body fields that should be redacted
SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
    "api_key",
    "key",
}

SKIP_PATHS = ("/health", "/metrics", "/api/v1/health", "/api/v1/readyz")

TEXT_CONTENT_TYPES = ("application/json", "text/")


def _sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact sensitive headers."""
    return {
        k: "***REDACTED***" if k.lower() in SENSITIVE_HEADERS else v for k, v in headers.items()
    }


def _sanitize_body(body: Any) -> Any:
    """Redact sensitive fields from request/response body."""
    if isinstance(body, dict):
        return {
            k: "***REDACTED***" if k.lower() in SENSITIVE_FIELDS else _sanitize_body(v)
            for k, v in body.items()
        }
    if isinstance(body, list):
        return [_sanitize_body(item) for item in body]
    return body


def _is_text(content_type: str | None) -> bool:
    return bool(content_type) and content_type.startswith(TEXT_CONTENT_TYPES)


def _describe_body(body: bytes | None, content_type: str | None, max_size: int) -> Any:
    """
    Loggable form of a body.

    JSON is parsed and sanitized, other text is truncated, and binary
    payloads (image uploads and downloads) are reduced to their size.
    """
    if not body:
        return None

    if not _is_text(content_type):
        return {"content_type": content_type or "unknown", "size_bytes": len(body)}

    text = body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text)
    except ValueError:
        return text[:max_size] + ("... (truncated)" if len(text) > max_size else "")

    rendered = json.dumps(_sanitize_body(parsed), default=str)
    if len(rendered) > max_size:
        return rendered[:max_size] + "... (truncated)"
    return _sanitize_body(parsed)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs all API requests and responses.

    Logs include:
    - Request method, path, query, headers, body
    - Response status, headers, body
    - Duration in milliseconds
    - Request ID for correlation

    Sensitive data is automatically redacted.
    """

    def __init__(self, app: ASGIApp, enabled: bool = True) -> None:
        super().__init__(app)
        self.enabled = enabled or settings.app_env in ("local", "test")

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.enabled or request.url.path in SKIP_PATHS:
            return await call_next(request)

        start_time = datetime.now(UTC)
        method = request.method

        request_body = None
        if method in ("POST", "PUT", "PATCH"):
            request_body = await request.body()

        response = await call_next(request)

        duration_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000

        # Streaming responses have no body attribute
        response_body = getattr(response, "body", None)

        log_entry = {
            "type": "api_call",
            "request_id": get_request_id() or "unknown",
            "timestamp": datetime.now(UTC).isoformat(),
            "request": {
                "method": method,
                "path": request.url.path,
                "query_params": str(request.query_params) if request.query_params else None,
                "headers": _sanitize_headers(dict(request.headers)),
                "body": _describe_body(
                    request_body, request.headers.get("content-type"), max_size=1000
                ),
            },
            "response": {
                "status_code": response.status_code,
                "headers": _sanitize_headers(dict(response.headers)),
                "body": _describe_body(
                    response_body, response.headers.get("content-type"), max_size=5000
                ),
            },
            "performance": {
                "duration_ms": round(duration_ms, 2),
            },
        }

        user_id = get_user_id()
        if user_id:
            log_entry["user_id"] = user_id

        message = json.dumps(log_entry, default=str)
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)

        return response
