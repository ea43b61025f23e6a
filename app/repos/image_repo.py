"""
Image repository.

Row-level operations on ``images`` plus ``SqlImageCollection``, the SQL
implementation of the pagination engine's storage contract.

All functions are async - use AsyncSession from SQLAlchemy. Callers own
the transaction: repos flush, routes commit.
"""

import logging
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DuplicateImageError, NotFoundError, StorageError, ValidationError
from app.core.observability import db_metrics
from app.db.models import Image
from app.domain.enums import SortOrder

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"country", "locality", "created_at", "lat", "long", "thumbhash"})


async def save_image(db: AsyncSession, image: Image) -> Image:
    """Insert a new image row.

    Raises:
        DuplicateImageError: If an image with the same ID already exists
    """
    with db_metrics.track("save_image"):
        existing = await db.get(Image, image.id)
        if existing is not None:
            raise DuplicateImageError(image.id)

        db.add(image)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise DuplicateImageError(image.id) from e

    logger.info(
        "Image saved",
        extra={"image_id": image.id, "country": image.country, "created_at": image.created_at},
    )
    return image


async def get_image(db: AsyncSession, image_id: str) -> Image:
    with db_metrics.track("get_image"):
        image = await db.get(Image, image_id)
    if image is None:
        raise NotFoundError("Image not found", details={"image_id": image_id})
    return image


async def update_image(db: AsyncSession, image_id: str, **fields: Any) -> Image:
    """Patch the editable fields of an image.

    Args:
        db: Async database session
        image_id: Image to update
        **fields: New values; only ``EDITABLE_FIELDS`` are accepted

    Raises:
        NotFoundError: If the image does not exist
        ValidationError: If a non-editable field is given
    """
    unknown = sorted(set(fields) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            "Fields cannot be edited",
            details={"fields": unknown, "editable": sorted(EDITABLE_FIELDS)},
        )

    image = await get_image(db, image_id)
    for name, value in fields.items():
        setattr(image, name, value)

    with db_metrics.track("update_image"):
        await db.flush()

    logger.info("Image updated", extra={"image_id": image_id, "fields": sorted(fields)})
    return image


async def delete_image(db: AsyncSession, image_id: str) -> Image:
    """Delete an image row and return the deleted row.

    Raises:
        NotFoundError: If the image does not exist
    """
    image = await get_image(db, image_id)
    with db_metrics.track("delete_image"):
        await db.delete(image)
        await db.flush()

    logger.info("Image deleted", extra={"image_id": image_id})
    return image


class SqlImageCollection:
    """
    Images ordered by ``(created_at, id)`` and filterable by country.

    The anchor row is located with scalar subqueries, so an anchor key
    that no longer exists compares against NULL and matches no rows.
    Driver errors are wrapped in ``StorageError``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def key_of(self, record: Image) -> str:
        return record.id

    async def get(self, key: str) -> Image | None:
        try:
            with db_metrics.track("get_image"):
                return await self.db.get(Image, key)
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load image", details={"image_id": key, "error": type(e).__name__}
            ) from e

    async def seek(
        self,
        *,
        order: SortOrder,
        filter_values: list[str],
        anchor_key: str,
        offset: int,
        limit: int,
    ) -> list[Image]:
        stmt = select(Image)

        if filter_values:
            stmt = stmt.where(Image.country.in_(filter_values))

        if anchor_key:
            anchor_created_at = (
                select(Image.created_at).where(Image.id == anchor_key).scalar_subquery()
            )
            if order == SortOrder.ASC:
                # (created_at > anchor) OR (created_at = anchor AND id > anchor_id)
                stmt = stmt.where(
                    or_(
                        Image.created_at > anchor_created_at,
                        and_(Image.created_at == anchor_created_at, Image.id > anchor_key),
                    )
                )
            else:
                stmt = stmt.where(
                    or_(
                        Image.created_at < anchor_created_at,
                        and_(Image.created_at == anchor_created_at, Image.id < anchor_key),
                    )
                )

        if order == SortOrder.ASC:
            stmt = stmt.order_by(Image.created_at.asc(), Image.id.asc())
        else:
            stmt = stmt.order_by(Image.created_at.desc(), Image.id.desc())

        stmt = stmt.offset(offset).limit(limit)

        try:
            with db_metrics.track("seek_images"):
                result = await self.db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to query images",
                details={"order": order.value, "anchor_key": anchor_key, "error": type(e).__name__},
            ) from e
