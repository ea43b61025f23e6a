"""Keyset/cursor-based pagination schemas."""

from __future__ import annotations

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class CursorDirection(str, Enum):
    """How a page of the gallery is being followed.

    ``reverse`` is used when the cursor came from ``prev_cursor``: the page
    is returned in natural order and its continuation is reported as
    ``prev_cursor``.
    """

    FORWARD = "forward"
    REVERSE = "reverse"


class KeysetPaginatedResponse(BaseModel, Generic[T]):
    """Response model for keyset-paginated data.

    Cursors are URL-safe base64. A cursor is absent when the page it would
    continue from is empty.
    """

    items: list[T]
    next_cursor: str | None = None
    prev_cursor: str | None = None
    limit: int
