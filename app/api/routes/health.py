import hmac
import logging
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings
from app.core.db import get_async_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def verify_health_token(x_health_token: Annotated[str | None, Header()] = None) -> None:
    """
    Verify health check token if configured.

    When HEALTH_TOKEN is set, health endpoints require a matching
    X-Health-Token header. Otherwise they stay public.
    """
    expected_token = settings.health_token
    if not expected_token:
        return

    if not x_health_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Health token required",
        )
    if not hmac.compare_digest(x_health_token, expected_token):
        logger.warning(
            "Unauthorized health check attempt",
            extra={
                "security_event": True,
                "event_type": "HEALTH_ACCESS_DENIED",
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid health token",
        )


@router.get("/health", dependencies=[Depends(verify_health_token)])
def health() -> dict:
    """Basic health check endpoint (public unless HEALTH_TOKEN is set)."""
    return {"ok": True}


@router.get("/readyz", dependencies=[Depends(verify_health_token)])
async def readyz() -> JSONResponse:
    """Readiness check: verifies the database and the upload directory.

    Returns:
      - 200 when both are available
      - 503 otherwise
    """
    checks = {"db": "ok", "storage": "ok"}

    try:
        engine: AsyncEngine = get_async_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error(f"Database readiness check failed: {exc}", exc_info=True)
        # Don't expose internal error details to callers
        checks["db"] = "unavailable"

    if not Path(settings.image_dir).is_dir():
        logger.error("Upload directory missing", extra={"image_dir": settings.image_dir})
        checks["storage"] = "unavailable"

    ok = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ok": ok, **checks},
    )
