"""
Fill in locality and country for images uploaded before geocoding worked.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Image
from app.repos.image_repo import update_image
from app.services.geocode import GeocodeClient
from app.services.image_ingest import lookup_location

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    checked: int = 0
    updated: int = 0
    unresolved: int = 0


async def images_missing_location(db: AsyncSession, limit: int | None = None) -> list[Image]:
    """Images with coordinates but no country, oldest first."""
    stmt = (
        select(Image)
        .where(Image.lat != 0, Image.long != 0, Image.country == "")
        .order_by(Image.created_at, Image.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def backfill_locations(
    db: AsyncSession,
    geocoder: GeocodeClient,
    limit: int | None = None,
) -> BackfillResult:
    """
    Reverse geocode every image that has coordinates but no country.

    Partial results (a country without a locality, or the reverse) are
    saved. Images the geocoder cannot place are left untouched so a later
    run can retry them. The caller commits.

    Args:
        db: Async database session
        geocoder: Reverse geocoder
        limit: Stop after this many images

    Returns:
        Counts of images checked, updated and left unresolved
    """
    result = BackfillResult()

    for image in await images_missing_location(db, limit):
        result.checked += 1
        locality, country = await lookup_location(geocoder, image.id, image.lat, image.long)
        if not (locality or country):
            result.unresolved += 1
            continue

        await update_image(db, image.id, locality=locality, country=country)
        result.updated += 1

    logger.info(
        f"Location backfill updated {result.updated} of {result.checked} images",
        extra={"checked": result.checked, "updated": result.updated},
    )
    return result
