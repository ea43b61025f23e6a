"""
Pytest configuration and shared fixtures for the gallery tests.

Provides:
- Test environment (in-memory SQLite, temporary upload directory, admin credentials)
- Async SQLAlchemy engine and session with transaction rollback
- Filesystem image store in a per-test temporary directory
- httpx AsyncClient fixtures over ASGITransport, anonymous and admin
- Image factories for seeding ordered collections

Async SQLAlchemy Fixtures:
- async_engine: Function-scoped in-memory aiosqlite engine with the schema created
- async_db_session: Function-scoped async session with transaction rollback

Async Helper Functions:
- acreate_image_in_db(): Create an Image using AsyncSession
- aseed_images(): Create images spaced one hour apart, one per country tag
"""

from __future__ import annotations

import hashlib
import os
import sys
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from io import BytesIO
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]

# Add app to path for imports
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Set test environment variables before importing app
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["IMAGE_DIR"] = tempfile.mkdtemp(prefix="gallery-test-")
os.environ["OTEL_ENABLED"] = "false"
os.environ.setdefault("ADMIN_USERNAMES", "admin,curator")
os.environ.setdefault("ADMIN_PASSWORD", "test-admin-password")

import httpx  # noqa: E402 (import after env setup)
import pytest  # noqa: E402 (import after env setup)
from PIL import ExifTags  # noqa: E402 (import after env setup)
from PIL import Image as PILImage  # noqa: E402 (import after env setup)
from PIL.PngImagePlugin import PngInfo  # noqa: E402 (import after env setup)
from PIL.TiffImagePlugin import IFDRational  # noqa: E402 (import after env setup)
from sqlalchemy.ext.asyncio import (  # noqa: E402 (import after env setup)
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402 (import after env setup)

from app.core.config import settings  # noqa: E402 (import after env setup)
from app.core.db import init_db  # noqa: E402 (import after env setup)
from app.core.dependencies import (  # noqa: E402 (import after env setup)
    get_async_db_session,
    get_geocoder,
    get_image_store,
)
from app.db.models import Image  # noqa: E402 (import after env setup)
from app.main import create_app  # noqa: E402 (import after env setup)
from app.services.geocode import GeocodeClient  # noqa: E402 (import after env setup)
from app.services.image_store import FilesystemImageStore  # noqa: E402 (import after env setup)

ADMIN_AUTH = httpx.BasicAuth("admin", "test-admin-password")

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0)


def _color(tag: str) -> tuple[int, int, int]:
    r, g, b = hashlib.sha256(tag.encode()).digest()[:3]
    return r, g, b


def png_bytes(tag: str = "", size: tuple[int, int] = (4, 3)) -> bytes:
    """A real PNG; distinct tags give distinct image IDs."""
    info = PngInfo()
    info.add_text("tag", tag)
    buf = BytesIO()
    PILImage.new("RGB", size, _color(tag)).save(buf, "PNG", pnginfo=info)
    return buf.getvalue()


def jpeg_bytes(
    tag: str = "", size: tuple[int, int] = (4, 3), exif: PILImage.Exif | None = None
) -> bytes:
    """A real JPEG, optionally carrying EXIF; the tag is written as a JPEG comment."""
    buf = BytesIO()
    options: dict[str, Any] = {"comment": tag.encode()}
    if exif is not None:
        options["exif"] = exif
    PILImage.new("RGB", size, _color(tag)).save(buf, "JPEG", **options)
    return buf.getvalue()


def _dms(value: float) -> tuple[IFDRational, IFDRational, IFDRational]:
    degrees = int(value)
    minutes = int((value - degrees) * 60)
    seconds = round(((value - degrees) * 60 - minutes) * 60, 4)
    return IFDRational(degrees), IFDRational(minutes), IFDRational(seconds)


def make_exif(
    *, taken_at: str | None = None, lat: float | None = None, lng: float | None = None
) -> PILImage.Exif:
    """EXIF with a DateTime ("YYYY:MM:DD HH:MM:SS") and/or a GPS position."""
    exif = PILImage.Exif()
    if taken_at is not None:
        exif[ExifTags.Base.DateTime] = taken_at
    if lat is not None and lng is not None:
        exif[ExifTags.IFD.GPSInfo] = {
            ExifTags.GPS.GPSLatitudeRef: "S" if lat < 0 else "N",
            ExifTags.GPS.GPSLatitude: _dms(abs(lat)),
            ExifTags.GPS.GPSLongitudeRef: "W" if lng < 0 else "E",
            ExifTags.GPS.GPSLongitude: _dms(abs(lng)),
        }
    return exif


# =============================================================================
# AnyIO backend configuration
# =============================================================================
# Per AnyIO testing docs: https://anyio.readthedocs.io/en/stable/testing.html
# This fixture ensures async fixtures work with AnyIO's pytest plugin.
@pytest.fixture
def anyio_backend():
    return "asyncio"


# ============================================================================
# Async SQLAlchemy Fixtures
# ============================================================================


@pytest.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """
    Create a fresh in-memory SQLite engine for testing.

    StaticPool keeps a single connection, so every session in the test sees
    the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def async_db_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """
    Provide a clean async database session for each test function.

    Automatically rolls back changes after each test to ensure isolation.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()

        session_maker = async_sessionmaker(
            bind=connection,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )
        session = session_maker()

        # Patch commit() to flush() for test isolation
        session.commit = lambda: session.flush()  # type: ignore[method-assign]

        try:
            yield session
        finally:
            await session.rollback()
            await session.close()
            if transaction.is_active:
                await transaction.rollback()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def image_store(tmp_path: Path) -> FilesystemImageStore:
    return FilesystemImageStore(tmp_path / "images")


def geocode_transport(payload: dict[str, Any], status_code: int = 200) -> httpx.MockTransport:
    """Mock Google Geocoding API returning ``payload`` for every request."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


def geocode_payload(locality: str = "Santiago", country: str = "Chile") -> dict[str, Any]:
    return {
        "status": "OK",
        "results": [
            {
                "address_components": [
                    {"long_name": locality, "types": ["locality", "political"]},
                    {"long_name": country, "types": ["country", "political"]},
                ]
            }
        ],
    }


@pytest.fixture
async def geocoder() -> AsyncGenerator[GeocodeClient]:
    """Geocoder answering every lookup with Santiago, Chile."""
    async with httpx.AsyncClient(transport=geocode_transport(geocode_payload())) as http:
        yield GeocodeClient(api_key="test-key", url="https://geocode.test/json", http_client=http)


# ============================================================================
# API Clients
# ============================================================================


def create_test_app(
    session: AsyncSession,
    store: FilesystemImageStore,
    geocoder: GeocodeClient | None = None,
):
    app = create_app()

    def override_get_async_db():
        yield session

    app.dependency_overrides[get_async_db_session] = override_get_async_db
    app.dependency_overrides[get_image_store] = lambda: store
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    return app


@pytest.fixture
async def client(async_db_session: AsyncSession, image_store: FilesystemImageStore):
    """AsyncClient without credentials (a gallery visitor)."""
    app = create_test_app(async_db_session, image_store)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def admin_client(async_db_session: AsyncSession, image_store: FilesystemImageStore):
    """AsyncClient sending admin basic-auth credentials."""
    app = create_test_app(async_db_session, image_store)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test", auth=ADMIN_AUTH
    ) as c:
        yield c


@pytest.fixture
async def geocoding_admin_client(
    async_db_session: AsyncSession,
    image_store: FilesystemImageStore,
    geocoder: GeocodeClient,
):
    """Admin AsyncClient whose uploads are reverse geocoded to Santiago, Chile."""
    app = create_test_app(async_db_session, image_store, geocoder)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test", auth=ADMIN_AUTH
    ) as c:
        yield c


# ============================================================================
# Test Data Factories
# ============================================================================


def image_id_for(tag: str) -> str:
    return hashlib.sha256(tag.encode()).hexdigest()[:12]


async def acreate_image_in_db(session: AsyncSession, **kwargs) -> Image:
    """Create an Image row using AsyncSession."""
    image_id = kwargs.pop("id", None) or image_id_for(str(kwargs.get("created_at", "")))
    defaults: dict[str, Any] = {
        "file_name": f"{image_id}.png",
        "mime_type": "image/png",
        "width": 640,
        "height": 480,
        "thumbhash": "",
        "lat": 0.0,
        "long": 0.0,
        "locality": "",
        "country": "",
        "created_at": BASE_TIME,
    }
    defaults.update(kwargs)

    image = Image(id=image_id, **defaults)
    session.add(image)
    await session.commit()
    return image


async def aseed_images(
    session: AsyncSession,
    countries: list[str],
    *,
    start: datetime = BASE_TIME,
    step: timedelta = timedelta(hours=1),
) -> list[Image]:
    """Create one image per country tag, in increasing capture-time order."""
    images = []
    for index, country in enumerate(countries):
        images.append(
            await acreate_image_in_db(
                session,
                id=image_id_for(f"seed-{index}"),
                country=country,
                created_at=start + step * index,
            )
        )
    return images


@pytest.fixture
def settings_override():
    """Temporarily change attributes of the global settings object."""
    original: dict[str, Any] = {}

    def apply(**changes: Any) -> None:
        for name, value in changes.items():
            original.setdefault(name, getattr(settings, name))
            setattr(settings, name, value)

    yield apply

    for name, value in original.items():
        setattr(settings, name, value)
