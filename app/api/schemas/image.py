from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from app.api.schemas.keyset_pagination import KeysetPaginatedResponse
from app.repos.cursor import RESERVED_CHARACTERS


class ImageResponse(BaseModel):
    id: str
    file_name: str
    mime_type: str
    width: int
    height: int
    thumbhash: str
    lat: float
    long: float
    locality: str
    country: str
    created_at: datetime
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def file_url(self) -> str:
        return f"/api/v1/images/{self.id}/file"


class ImageListItem(ImageResponse):
    can_edit: bool = False


class ImageDetailResponse(ImageListItem):
    prev_id: str | None = Field(default=None, description="Previous image in oldest-first order")
    next_id: str | None = Field(default=None, description="Next image in oldest-first order")


class ImageListResponse(KeysetPaginatedResponse[ImageListItem]):
    pass


class ImageAroundResponse(KeysetPaginatedResponse[ImageListItem]):
    """Jump-to page: neighbors before, the target, neighbors after."""

    target_id: str
    degraded: list[str] = Field(
        default_factory=list,
        description="Sides ('before' / 'after') left out because they failed to load",
    )


class ImagePatch(BaseModel):
    """Editable image fields; omitted fields are left unchanged."""

    country: str | None = None
    locality: str | None = None
    created_at: datetime | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    long: float | None = Field(default=None, ge=-180, le=180)
    thumbhash: str | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str | None) -> str | None:
        """Countries are cursor filter values, so they may not hold separators."""
        if v is None:
            return v
        v = v.strip()
        found = sorted(RESERVED_CHARACTERS.intersection(v))
        if found:
            raise ValueError(f"country must not contain {found}")
        return v


class ImageUploadBatchResponse(BaseModel):
    """Images created by a multi-file upload; files already in the gallery are skipped."""

    items: list[ImageListItem]
    skipped: list[str] = Field(
        default_factory=list, description="IDs of uploaded files that already existed"
    )
