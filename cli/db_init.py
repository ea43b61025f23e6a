"""
Database setup command.

Creates the gallery tables in the database named by DATABASE_URL and the
upload directory named by IMAGE_DIR. Safe to run repeatedly.

Usage:
    uv run db-init
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from app.core.config import settings
from app.core.db import init_db, reset_async_engine


async def _init() -> None:
    try:
        await init_db()
    finally:
        await reset_async_engine()


def main() -> None:
    asyncio.run(_init())
    Path(settings.image_dir).mkdir(parents=True, exist_ok=True)
    print(f"Database ready: {settings.database_url}")
    print(f"Upload directory ready: {settings.image_dir}")
