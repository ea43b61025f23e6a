"""
Domain-specific exceptions for the photo gallery.

These exceptions represent business logic violations and are mapped
to appropriate HTTP status codes in the API layer.
"""

from typing import Any


class GalleryError(Exception):
    """Base exception for all gallery domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(GalleryError):
    """
    Raised when input data fails validation.

    Examples:
    - Unsupported image format
    - Filter value containing a reserved cursor character

    HTTP Status: 400 Bad Request
    """

    pass


class InvalidCursorError(ValidationError):
    """
    Raised when a pagination cursor cannot be decoded or encoded.

    Examples:
    - Malformed key/value pair
    - Unknown order literal
    - Non-numeric page or limit
    - Reserved character inside a value

    HTTP Status: 400 Bad Request
    """

    pass


class NotFoundError(GalleryError):
    """
    Raised when a requested resource does not exist.

    Examples:
    - Image ID not found
    - Jump-to target not found
    - Image file missing from the upload directory

    HTTP Status: 404 Not Found
    """

    pass


class UnauthorizedError(GalleryError):
    """
    Raised when an admin-only action is attempted without valid credentials.

    HTTP Status: 401 Unauthorized
    """

    pass


class ConflictError(GalleryError):
    """
    Raised when operation conflicts with current state.

    HTTP Status: 409 Conflict
    """

    pass


class DuplicateImageError(ConflictError):
    """
    Raised when an uploaded image already exists.

    Carries the existing image ID so callers can point at it.
    """

    def __init__(self, image_id: str):
        super().__init__("Image already exists", details={"image_id": image_id})
        self.image_id = image_id


class StorageError(GalleryError):
    """
    Raised when the backing store fails to answer a query.

    `details["phase"]` names the query phase that failed.

    HTTP Status: 500 Internal Server Error
    """

    pass


class GeocodeError(GalleryError):
    """
    Raised when reverse geocoding fails or returns incomplete data.

    HTTP Status: 502 Bad Gateway
    """

    pass


# HTTP Status Code Mapping
ERROR_STATUS_MAP = {
    InvalidCursorError: 400,
    ValidationError: 400,
    NotFoundError: 404,
    UnauthorizedError: 401,
    DuplicateImageError: 409,
    ConflictError: 409,
    StorageError: 500,
    GeocodeError: 502,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Subclasses inherit the status of their nearest mapped ancestor.

    Args:
        error: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_MAP:
            return ERROR_STATUS_MAP[cls]
    return 500
