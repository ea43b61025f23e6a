"""
Upload pipeline: decode and store the file, reverse geocode, database row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DuplicateImageError, GeocodeError
from app.db.models import Image, to_naive_utc, utcnow
from app.repos.image_repo import save_image
from app.services.geocode import GeocodeClient
from app.services.image_store import DecodedImage, FilesystemImageStore, compute_image_id

logger = logging.getLogger(__name__)

# Capture time used when neither the client nor EXIF supplies one
EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class ImageMetadata:
    """
    Metadata sent along with an upload.

    Capture time and coordinates override what EXIF says; zero coordinates
    mean "not given". The thumbhash is computed by the client.
    """

    created_at: datetime | None = None
    lat: float = 0.0
    long: float = 0.0
    thumbhash: str = ""

    @property
    def has_location(self) -> bool:
        return self.lat != 0 and self.long != 0

    def resolve(self, decoded: DecodedImage) -> "ImageMetadata":
        """Fill the fields the client left out from the decoded image."""
        lat, long = (self.lat, self.long) if self.has_location else (decoded.lat, decoded.long)
        return ImageMetadata(
            created_at=self.created_at or decoded.taken_at,
            lat=lat,
            long=long,
            thumbhash=self.thumbhash,
        )


async def lookup_location(
    geocoder: GeocodeClient | None, image_id: str, lat: float, long: float
) -> tuple[str, str]:
    """
    Locality and country for a position, or empty strings when unknown.

    Geocoding failures are logged, not raised; whatever part of the
    location was found is still returned.
    """
    if lat == 0 or long == 0:
        return "", ""
    if geocoder is None:
        logger.info("Geocoding not configured, skipping", extra={"image_id": image_id})
        return "", ""

    try:
        location = await geocoder.lookup(lat, long)
    except GeocodeError as e:
        logger.warning(
            f"Could not geocode {lat:.6f}, {long:.6f}: {e.message}",
            extra={"image_id": image_id, "details": e.details},
        )
        return e.details.get("locality", ""), e.details.get("country", "")

    return location.locality, location.country


async def ingest_image(
    db: AsyncSession,
    store: FilesystemImageStore,
    geocoder: GeocodeClient | None,
    data: bytes,
    metadata: ImageMetadata,
) -> Image:
    """
    Store an uploaded image and record it in the gallery.

    Args:
        db: Async database session (caller commits)
        store: Where the file bytes go
        geocoder: Reverse geocoder, or None when not configured
        data: Raw image bytes
        metadata: Client-supplied capture time, coordinates and thumbhash

    Returns:
        The new Image row

    Raises:
        ValidationError: If the bytes are not a supported image
        DuplicateImageError: If the image is already in the gallery
    """
    image_id = compute_image_id(data)
    if await db.get(Image, image_id) is not None:
        raise DuplicateImageError(image_id)

    # A file without a row is left over from a failed upload; replace it
    stored = store.save(data, overwrite=True)
    resolved = metadata.resolve(stored.image)

    locality, country = await lookup_location(geocoder, stored.id, resolved.lat, resolved.long)

    image = Image(
        id=stored.id,
        file_name=stored.file_name,
        mime_type=stored.mime_type,
        width=stored.image.width,
        height=stored.image.height,
        thumbhash=resolved.thumbhash,
        lat=resolved.lat,
        long=resolved.long,
        locality=locality,
        country=country,
        created_at=to_naive_utc(resolved.created_at) if resolved.created_at else EPOCH,
        uploaded_at=utcnow(),
    )

    try:
        return await save_image(db, image)
    except DuplicateImageError:
        # Another upload of the same file won the race; the file is theirs
        raise
    except Exception:
        store.delete(stored.id)
        raise
