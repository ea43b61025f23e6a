"""
Domain enums for the photo gallery.

The sort order literals double as the cursor wire spelling, so their values
must not change.
"""

from enum import Enum


class SortOrder(str, Enum):
    """Sort direction on the image creation timestamp."""

    ASC = "ASC"
    DESC = "DESC"

    def reversed(self) -> "SortOrder":
        """Return the opposite direction."""
        return SortOrder.DESC if self is SortOrder.ASC else SortOrder.ASC


class ListOrder(str, Enum):
    """User-facing spelling of the sort order used by the gallery pages."""

    OLDEST = "oldest"
    LATEST = "latest"

    def to_sort_order(self) -> SortOrder:
        return SortOrder.DESC if self is ListOrder.LATEST else SortOrder.ASC
