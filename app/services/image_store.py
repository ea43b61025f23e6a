"""
Filesystem storage for uploaded image files.

Files are content-addressed: the image ID is the first 12 hex characters
of the SHA-256 of the bytes, and the file is stored as ``<id>.<ext>``.
Every upload is decoded with Pillow before it is written, which yields
its format, dimensions and any EXIF capture time and GPS position.
"""

import hashlib
import logging
import struct
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image, UnidentifiedImageError

from app.core.errors import DuplicateImageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ID_LENGTH = 12
_HEX_DIGITS = frozenset("0123456789abcdef")

# Pillow format name -> (extension, mime type)
SUPPORTED_FORMATS: dict[str, tuple[str, str]] = {
    "JPEG": ("jpeg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "GIF": ("gif", "image/gif"),
    "WEBP": ("webp", "image/webp"),
}

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

_DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    SyntaxError,
    ValueError,
    struct.error,
    Image.DecompressionBombError,
)


@dataclass(frozen=True)
class DecodedImage:
    """What the image bytes themselves say about a photo."""

    ext: str
    mime_type: str
    width: int
    height: int
    taken_at: datetime | None = None
    lat: float = 0.0
    long: float = 0.0


@dataclass(frozen=True)
class StoredFile:
    """Result of saving an image file."""

    id: str
    file_name: str
    size: int
    image: DecodedImage

    @property
    def mime_type(self) -> str:
        return self.image.mime_type


def compute_image_id(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:ID_LENGTH]


def _exif_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value).strip("\x00 ")


def _exif_taken_at(exif: Image.Exif) -> datetime | None:
    candidates = (
        exif.get_ifd(ExifTags.IFD.Exif).get(ExifTags.Base.DateTimeOriginal),
        exif.get(ExifTags.Base.DateTime),
    )
    for value in candidates:
        if not value:
            continue
        try:
            return datetime.strptime(_exif_text(value), EXIF_DATETIME_FORMAT)
        except ValueError:
            logger.debug(f"Ignoring unparseable EXIF date {value!r}")
    return None


def _gps_degrees(dms: Any, ref: Any) -> float:
    degrees, minutes, seconds = (float(part) for part in dms)
    value = degrees + minutes / 60 + seconds / 3600
    return -value if _exif_text(ref).upper() in ("S", "W") else value


def _exif_position(exif: Image.Exif) -> tuple[float, float]:
    gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
    lat, lat_ref = gps.get(ExifTags.GPS.GPSLatitude), gps.get(ExifTags.GPS.GPSLatitudeRef)
    lng, lng_ref = gps.get(ExifTags.GPS.GPSLongitude), gps.get(ExifTags.GPS.GPSLongitudeRef)
    if not (lat and lat_ref and lng and lng_ref):
        return 0.0, 0.0
    try:
        return _gps_degrees(lat, lat_ref), _gps_degrees(lng, lng_ref)
    except (TypeError, ValueError, ZeroDivisionError):
        logger.debug("Ignoring malformed EXIF GPS position")
        return 0.0, 0.0


def decode_image(data: bytes) -> DecodedImage:
    """
    Decode image bytes and read their EXIF metadata.

    Raises:
        ValidationError: If the bytes are not a decodable JPEG, PNG, GIF or WEBP image
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
        # verify() leaves the image unusable, so decode again for pixels and EXIF
        with Image.open(BytesIO(data)) as img:
            img.load()
            image_format = img.format
            width, height = img.size
            exif = img.getexif()
    except _DECODE_ERRORS as e:
        raise ValidationError(
            "Image could not be decoded", details={"error": type(e).__name__}
        ) from e

    if image_format not in SUPPORTED_FORMATS:
        raise ValidationError(
            "Unsupported image format",
            details={
                "format": image_format,
                "supported": [mime for _, mime in SUPPORTED_FORMATS.values()],
            },
        )

    ext, mime_type = SUPPORTED_FORMATS[image_format]
    lat, long = _exif_position(exif)
    return DecodedImage(
        ext=ext,
        mime_type=mime_type,
        width=width,
        height=height,
        taken_at=_exif_taken_at(exif),
        lat=lat,
        long=long,
    )


class FilesystemImageStore:
    """
    Image files in a single local directory.

    The directory is created on first use.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _find(self, image_id: str) -> Path | None:
        if len(image_id) != ID_LENGTH or not all(c in _HEX_DIGITS for c in image_id):
            return None
        matches = sorted(self.root.glob(f"{image_id}.*"))
        return matches[0] if matches else None

    def save(self, data: bytes, *, overwrite: bool = False) -> StoredFile:
        """
        Write image bytes to the store.

        Args:
            data: Raw image bytes
            overwrite: Replace an existing file with the same ID instead of failing

        Raises:
            ValidationError: If the bytes are empty or not a supported image
            DuplicateImageError: If the same file is already stored and
                ``overwrite`` is false
        """
        if not data:
            raise ValidationError("Image upload is empty")

        decoded = decode_image(data)
        image_id = compute_image_id(data)

        existing = self._find(image_id)
        if existing is not None:
            if not overwrite:
                raise DuplicateImageError(image_id)
            existing.unlink()

        file_name = f"{image_id}.{decoded.ext}"
        (self.root / file_name).write_bytes(data)

        logger.info(f"Stored image file {file_name} ({len(data)} bytes)")
        return StoredFile(id=image_id, file_name=file_name, size=len(data), image=decoded)

    def read(self, image_id: str) -> bytes:
        """
        Read the bytes of a stored image.

        Raises:
            NotFoundError: If no file exists for the ID
        """
        path = self._find(image_id)
        if path is None:
            raise NotFoundError("Image file not found", details={"image_id": image_id})
        return path.read_bytes()

    def delete(self, image_id: str) -> None:
        """
        Remove a stored image.

        Raises:
            NotFoundError: If no file exists for the ID
        """
        path = self._find(image_id)
        if path is None:
            raise NotFoundError("Image file not found", details={"image_id": image_id})
        path.unlink()
        logger.info(f"Deleted image file {path.name}")
