"""
SQLAlchemy 2.x ORM models for the photo gallery.

Models use the Mapped[] type annotation syntax and mapped_column.
Timestamps are stored as naive UTC datetimes.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class Image(Base):
    """
    One uploaded photo.

    ``id`` is the first 12 hex characters of the file's SHA-256, so the same
    file always maps to the same row. Gallery pages are ordered by
    ``created_at`` (capture time) with ``id`` as the tie-breaker and can be
    filtered by ``country``.
    """

    __tablename__ = "images"
    __table_args__ = (
        Index("ix_images_created_at_id", "created_at", "id"),
        Index("ix_images_country", "country"),
    )

    id: Mapped[str] = mapped_column(String(12), primary_key=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(32), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thumbhash: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lat: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    long: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    locality: Mapped[str] = mapped_column(Text, nullable=False, default="")
    country: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Image(id={self.id}, created_at={self.created_at}, country={self.country})>"

    @validates("created_at", "uploaded_at")
    def _validate_timestamp(self, key: str, value: datetime) -> datetime:
        return to_naive_utc(value)
