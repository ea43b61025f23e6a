"""
Admin authentication over HTTP basic auth.

Anyone may browse the gallery. Uploading, editing and deleting images
requires the credentials of a configured admin (``ADMIN_USERNAMES`` and
``ADMIN_PASSWORD``).
"""

import hmac
import logging

from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.core.config import settings
from app.core.errors import UnauthorizedError
from app.core.observability import set_user_id

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MSG = "Invalid or missing admin credentials"

_optional_security = HTTPBasic(auto_error=False, realm="gallery")


def is_admin(credentials: HTTPBasicCredentials | None) -> bool:
    """
    Check basic-auth credentials against the configured admins.

    Both the username and the password are compared in constant time.
    No admin is recognized while ``ADMIN_PASSWORD`` is unset.

    Args:
        credentials: Parsed Authorization header, if any

    Returns:
        True when the username is a configured admin and the password matches
    """
    if credentials is None or not settings.admin_password:
        return False

    username_ok = any(
        hmac.compare_digest(credentials.username.encode(), name.encode())
        for name in settings.admin_usernames_list
    )
    password_ok = hmac.compare_digest(
        credentials.password.encode(), settings.admin_password.encode()
    )
    return username_ok and password_ok


async def get_optional_admin(
    credentials: HTTPBasicCredentials | None = Depends(_optional_security),
) -> str | None:
    """
    FastAPI dependency returning the admin username, or None for visitors.

    Wrong credentials are treated like no credentials; read-only endpoints
    stay available and only the edit controls are hidden.
    """
    if not is_admin(credentials):
        return None
    set_user_id(credentials.username)
    return credentials.username


async def require_admin(
    credentials: HTTPBasicCredentials | None = Depends(_optional_security),
) -> str:
    """
    FastAPI dependency guarding admin-only endpoints.

    Usage:
        @router.delete("/images/{image_id}")
        async def delete(image_id: str, admin: AdminUser):
            ...

    Returns:
        The admin username

    Raises:
        UnauthorizedError: If credentials are missing or wrong
    """
    if credentials is None:
        logger.warning("Missing Authorization header on admin endpoint")
        raise UnauthorizedError(INVALID_CREDENTIALS_MSG)

    if not is_admin(credentials):
        logger.warning(
            "Rejected admin credentials",
            extra={"username": credentials.username},
        )
        raise UnauthorizedError(INVALID_CREDENTIALS_MSG)

    set_user_id(credentials.username)
    return credentials.username
