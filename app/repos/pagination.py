"""Keyset pagination over an ordered, filterable collection.

The engine is storage-agnostic: it talks to anything implementing
``OrderedCollection`` and never holds state between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from app.core.errors import NotFoundError, StorageError
from app.core.observability import metrics
from app.core.telemetry import get_tracer
from app.domain.enums import SortOrder
from app.repos.cursor import ByOffset, Cursor, ListQuery

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")


class OrderedCollection(Protocol[T]):
    """Storage contract required by the pagination engine."""

    def key_of(self, record: T) -> str:
        """Unique identifier of a record."""
        ...

    async def get(self, key: str) -> T | None:
        """Resolve a record by identifier."""
        ...

    async def seek(
        self,
        *,
        order: SortOrder,
        filter_values: list[str],
        anchor_key: str,
        offset: int,
        limit: int,
    ) -> list[T]:
        """Return up to ``limit`` records sorted by the sort key in ``order``.

        Only records whose filter field equals one of ``filter_values`` are
        returned (no filtering when empty). A non-empty ``anchor_key`` keeps
        records strictly after that record in ``order``; an unknown anchor
        matches nothing. ``offset`` rows are skipped first.
        """
        ...


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results plus the query that continues it."""

    items: tuple[T, ...]
    query: ListQuery

    @property
    def cursor(self) -> Cursor:
        return Cursor(self.query)

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass(frozen=True)
class Neighborhood(Generic[T]):
    """A target record with pages of its nearest predecessors and successors.

    ``before`` is already in the natural order. Its continuation keeps the
    reversed order, so following it pages further backward.
    """

    before: Page[T]
    target: T
    after: Page[T]
    errors: dict[str, StorageError] = field(default_factory=dict)

    @property
    def items(self) -> list[T]:
        return [*self.before.items, self.target, *self.after.items]


async def fetch(
    collection: OrderedCollection[T], query: ListQuery, *, phase: str = "fetch"
) -> Page[T]:
    """Run one bounded, ordered, filtered fetch.

    Args:
        collection: Backing collection
        query: Query parameters; defaults are applied to a copy
        phase: Name of the query phase, reported on storage failure

    Returns:
        Page whose continuation has ``anchor_key`` set to the last record
        returned (unchanged when the page is empty)

    Raises:
        StorageError: If the collection fails
    """
    query = query.with_defaults()
    mode = query.paging_mode

    offset = mode.offset(query.limit) if isinstance(mode, ByOffset) else 0
    anchor_key = "" if isinstance(mode, ByOffset) else mode.anchor_key

    try:
        records = await collection.seek(
            order=query.order,
            filter_values=list(query.filter_values),
            anchor_key=anchor_key,
            offset=offset,
            limit=query.limit,
        )
    except StorageError as e:
        raise StorageError(
            f"Pagination {phase} failed: {e.message}",
            details={**e.details, "phase": phase},
        ) from e

    metrics.gallery_pages_total.labels(mode=type(mode).__name__).inc()

    items = tuple(records[: query.limit])
    continuation = query.copy()
    if items:
        continuation.anchor_key = collection.key_of(items[-1])

    return Page(items=items, query=continuation)


async def fetch_reversed(
    collection: OrderedCollection[T], query: ListQuery, *, phase: str = "fetch"
) -> Page[T]:
    """Fetch the nearest records on the other side of the anchor.

    The fetch runs with the order flipped, so the nearest predecessors come
    first, then the items are reversed back into ``query.order``. The
    continuation keeps the flipped order.
    """
    query = query.with_defaults()
    page = await fetch(collection, query.copy(order=query.order.reversed()), phase=phase)
    return Page(items=tuple(reversed(page.items)), query=page.query)


async def fetch_around(
    collection: OrderedCollection[T],
    target_id: str,
    order: SortOrder,
    filter_values: list[str],
    neighbor_limit: int,
) -> Neighborhood[T]:
    """Resolve a record and fetch up to ``neighbor_limit`` neighbors on each side.

    A storage failure on one side is logged and recorded in
    ``Neighborhood.errors``; that side comes back as an empty page.

    Raises:
        NotFoundError: If the target does not exist
        StorageError: If resolving the target fails
    """
    with tracer.start_as_current_span("gallery.fetch_around") as span:
        span.set_attribute("gallery.target_id", target_id)
        span.set_attribute("gallery.neighbor_limit", neighbor_limit)

        try:
            target = await collection.get(target_id)
        except StorageError as e:
            raise StorageError(
                f"Pagination target lookup failed: {e.message}",
                details={**e.details, "phase": "target"},
            ) from e
        if target is None:
            raise NotFoundError("Image not found", details={"image_id": target_id})

        side_query = ListQuery(
            order=order,
            filter_values=list(filter_values),
            anchor_key=collection.key_of(target),
            limit=neighbor_limit,
        )

        errors: dict[str, StorageError] = {}

        try:
            before = await fetch_reversed(collection, side_query, phase="before")
        except StorageError as e:
            before = _failed_side(side_query.copy(order=order.reversed()), "before", e, errors)

        try:
            after = await fetch(collection, side_query, phase="after")
        except StorageError as e:
            after = _failed_side(side_query, "after", e, errors)

        return Neighborhood(before=before, target=target, after=after, errors=errors)


def _failed_side(
    query: ListQuery, side: str, error: StorageError, errors: dict[str, StorageError]
) -> Page:
    logger.warning(
        f"Neighbor fetch failed, dropping {side} page: {error.message}",
        extra={"side": side, "details": error.details},
    )
    metrics.gallery_neighbor_failures_total.labels(side=side).inc()
    errors[side] = error
    return Page(items=(), query=query.with_defaults())
