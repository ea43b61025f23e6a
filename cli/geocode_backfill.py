"""
Location backfill command.

Reverse geocodes every image that has GPS coordinates but no country,
using the Google Maps key from GOOGLE_MAPS_API_KEY, and saves the
locality and country found. Safe to run repeatedly.

Usage:
    uv run geocode-backfill
    uv run geocode-backfill --limit 50
"""

from __future__ import annotations

import argparse
import asyncio

from app.core.config import settings
from app.core.db import get_async_db_session, reset_async_engine
from app.services.geocode import GeocodeClient, close_async_http_client
from app.services.location_backfill import BackfillResult, backfill_locations


async def _backfill(limit: int | None) -> BackfillResult:
    geocoder = GeocodeClient(api_key=settings.google_maps_api_key)
    try:
        async with get_async_db_session() as db:
            return await backfill_locations(db, geocoder, limit=limit)
    finally:
        await close_async_http_client()
        await reset_async_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="Reverse geocode images missing a location")
    parser.add_argument("--limit", type=int, default=None, help="Stop after this many images")
    args = parser.parse_args()

    if not settings.google_maps_api_key:
        raise SystemExit("GOOGLE_MAPS_API_KEY is not set")

    result = asyncio.run(_backfill(args.limit))
    print(f"Checked {result.checked} images")
    print(f"Updated {result.updated}, unresolved {result.unresolved}")
