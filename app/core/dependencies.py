"""
FastAPI dependency injection utilities.

Provides reusable dependencies for database sessions, admin
authentication, file storage and reverse geocoding.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_async_sessionmaker
from app.core.security import get_optional_admin, require_admin
from app.repos.image_repo import SqlImageCollection
from app.services.geocode import GeocodeClient
from app.services.image_store import FilesystemImageStore

# ============================================================================
# Database Dependencies
# ============================================================================


async def get_async_db_session() -> AsyncGenerator[AsyncSession]:
    """
    Async database session dependency for FastAPI endpoints.

    Usage:
        @router.get("/images/{image_id}")
        async def get_image(image_id: str, db: AsyncDbSession):
            ...

    Yields:
        Async SQLAlchemy database session
    """
    session_maker = get_async_sessionmaker()
    async with session_maker() as session:
        yield session


# Type alias for async database session dependency
AsyncDbSession = Annotated[AsyncSession, Depends(get_async_db_session)]


def get_image_collection(db: AsyncDbSession) -> SqlImageCollection:
    """Images as an ordered collection for the pagination engine."""
    return SqlImageCollection(db)


ImageCollection = Annotated[SqlImageCollection, Depends(get_image_collection)]


# ============================================================================
# Authentication Dependencies
# ============================================================================

# Admin username; 401 when credentials are missing or wrong
AdminUser = Annotated[str, Depends(require_admin)]

# Admin username, or None for anonymous visitors
OptionalAdmin = Annotated[str | None, Depends(get_optional_admin)]


# ============================================================================
# Service Dependencies
# ============================================================================


@lru_cache
def get_image_store() -> FilesystemImageStore:
    return FilesystemImageStore(settings.image_dir)


def get_geocoder() -> GeocodeClient | None:
    """Reverse geocoder, or None when no Google Maps API key is configured."""
    if not settings.google_maps_api_key:
        return None
    return GeocodeClient(api_key=settings.google_maps_api_key)


ImageStoreDep = Annotated[FilesystemImageStore, Depends(get_image_store)]
GeocoderDep = Annotated[GeocodeClient | None, Depends(get_geocoder)]
