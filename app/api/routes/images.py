from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, File, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from app.api.schemas.image import (
    ImageAroundResponse,
    ImageDetailResponse,
    ImageListItem,
    ImageListResponse,
    ImagePatch,
    ImageResponse,
    ImageUploadBatchResponse,
)
from app.api.schemas.keyset_pagination import CursorDirection
from app.core.config import settings
from app.core.dependencies import (
    AdminUser,
    AsyncDbSession,
    GeocoderDep,
    ImageCollection,
    ImageStoreDep,
    OptionalAdmin,
)
from app.core.errors import DuplicateImageError, InvalidCursorError, NotFoundError, StorageError
from app.core.observability import metrics
from app.db.models import Image
from app.domain.enums import ListOrder, SortOrder
from app.repos.cursor import DEFAULT_LIMIT, MAX_LIMIT, ListQuery, parse_cursor
from app.repos.image_repo import SqlImageCollection, delete_image, get_image, update_image
from app.repos.pagination import Page, fetch, fetch_around
from app.services.image_ingest import ImageMetadata, ingest_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["images"])

API_PREFIX = "/api/v1"

# Uploaded files never change under the same ID
FILE_CACHE_CONTROL = "private, max-age=2628288, immutable"


def _image_location(image_id: str) -> str:
    return f"{API_PREFIX}/images/{image_id}"


def _parse_countries(countries: str | None) -> list[str]:
    if not countries:
        return []
    return [c.strip() for c in countries.split(",") if c.strip()]


def _list_items(images, can_edit: bool) -> list[ImageListItem]:
    return [
        ImageListItem.model_validate(image, from_attributes=True).model_copy(
            update={"can_edit": can_edit}
        )
        for image in images
    ]


def _encoded_cursor(page: Page[Image]) -> str | None:
    if page.is_empty:
        return None
    return page.cursor.encoded_string()


@router.get("/images", response_model=ImageListResponse)
async def list_images(
    collection: ImageCollection,
    admin: OptionalAdmin,
    cursor: Annotated[
        str | None,
        Query(description="Cursor from a previous page (base64 or plain form)"),
    ] = None,
    direction: Annotated[
        CursorDirection,
        Query(description="'reverse' when following a prev_cursor"),
    ] = CursorDirection.FORWARD,
    order: Annotated[ListOrder, Query(description="Sort by capture time")] = ListOrder.OLDEST,
    countries: Annotated[
        str | None, Query(description="Comma-separated country names to include")
    ] = None,
    limit: Annotated[
        int, Query(ge=1, le=MAX_LIMIT, description=f"Page size (max {MAX_LIMIT})")
    ] = DEFAULT_LIMIT,
):
    """List gallery images with keyset pagination.

    A cursor carries the order, country filter and page size of the listing
    it came from, so ``order``, ``countries`` and ``limit`` are ignored when
    a cursor is given.
    """
    if cursor:
        try:
            query = parse_cursor(cursor)
        except InvalidCursorError:
            metrics.gallery_cursor_errors_total.inc()
            raise
    else:
        query = ListQuery(
            order=order.to_sort_order(),
            filter_values=_parse_countries(countries),
            limit=limit,
        )
        query.validate()

    page = await fetch(collection, query)
    encoded = _encoded_cursor(page)

    items = list(page.items)
    next_cursor, prev_cursor = encoded, None
    if direction == CursorDirection.REVERSE:
        items.reverse()
        next_cursor, prev_cursor = None, encoded

    return ImageListResponse(
        items=_list_items(items, can_edit=admin is not None),
        next_cursor=next_cursor,
        prev_cursor=prev_cursor,
        limit=page.query.limit,
    )


@router.get("/images/around/{image_id}", response_model=ImageAroundResponse)
async def list_images_around(
    image_id: str,
    collection: ImageCollection,
    admin: OptionalAdmin,
    order: Annotated[ListOrder, Query(description="Sort by capture time")] = ListOrder.OLDEST,
    countries: Annotated[
        str | None, Query(description="Comma-separated country names to include")
    ] = None,
    limit: Annotated[
        int | None, Query(ge=1, le=MAX_LIMIT, description="Images on each side of the target")
    ] = None,
):
    """Jump to an image: its nearest neighbors on both sides, then the image itself.

    ``prev_cursor`` continues backward from the first image (follow it with
    ``direction=reverse``) and ``next_cursor`` continues forward from the last.
    A side that fails to load is left out and named in ``degraded``.
    """
    neighbor_limit = limit or settings.neighbor_limit
    filter_values = _parse_countries(countries)
    ListQuery(filter_values=filter_values).validate()

    neighborhood = await fetch_around(
        collection,
        image_id,
        order=order.to_sort_order(),
        filter_values=filter_values,
        neighbor_limit=neighbor_limit,
    )

    return ImageAroundResponse(
        items=_list_items(neighborhood.items, can_edit=admin is not None),
        next_cursor=_encoded_cursor(neighborhood.after),
        prev_cursor=_encoded_cursor(neighborhood.before),
        limit=neighbor_limit,
        target_id=image_id,
        degraded=sorted(neighborhood.errors),
    )


async def _adjacent_id(
    collection: SqlImageCollection, image_id: str, order: SortOrder
) -> str | None:
    try:
        page = await fetch(collection, ListQuery(order=order, anchor_key=image_id, limit=1))
    except StorageError as e:
        logger.warning(
            f"Could not load adjacent image: {e.message}",
            extra={"image_id": image_id, "order": order.value},
        )
        return None
    return page.items[0].id if page.items else None


@router.get("/images/{image_id}", response_model=ImageDetailResponse)
async def get_image_detail(
    image_id: str,
    db: AsyncDbSession,
    collection: ImageCollection,
    admin: OptionalAdmin,
):
    """Image metadata with the IDs of the previous and next image, oldest first."""
    image = await get_image(db, image_id)

    detail = ImageDetailResponse.model_validate(image, from_attributes=True)
    return detail.model_copy(
        update={
            "can_edit": admin is not None,
            "prev_id": await _adjacent_id(collection, image_id, SortOrder.DESC),
            "next_id": await _adjacent_id(collection, image_id, SortOrder.ASC),
        }
    )


@router.get("/images/{image_id}/file")
async def get_image_file(image_id: str, db: AsyncDbSession, store: ImageStoreDep) -> Response:
    """Raw image bytes, served with the MIME type recorded at upload."""
    image = await get_image(db, image_id)
    return Response(
        content=store.read(image_id),
        media_type=image.mime_type,
        headers={"Cache-Control": FILE_CACHE_CONTROL},
    )


@router.post(
    "/images",
    response_model=ImageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={204: {"description": "Image already exists; Location points at it"}},
)
async def post_image(
    request: Request,
    db: AsyncDbSession,
    store: ImageStoreDep,
    geocoder: GeocoderDep,
    admin: AdminUser,
    created_at: Annotated[
        datetime | None, Query(description="Capture time (defaults to EXIF, then the Unix epoch)")
    ] = None,
    lat: Annotated[float, Query(ge=-90, le=90)] = 0.0,
    lng: Annotated[float, Query(ge=-180, le=180)] = 0.0,
    thumbhash: str = "",
):
    """
    Upload one image as the raw request body.

    Requires admin credentials. Capture time and coordinates given here take
    precedence over the EXIF data in the file. When a position is known and
    a Google Maps API key is configured, locality and country are filled in
    by reverse geocoding.
    """
    data = await request.body()
    metadata = ImageMetadata(
        created_at=created_at,
        lat=lat,
        long=lng,
        thumbhash=thumbhash,
    )

    try:
        image = await ingest_image(db, store, geocoder, data, metadata)
    except DuplicateImageError as e:
        logger.info("Duplicate upload", extra={"image_id": e.image_id})
        return Response(
            status_code=status.HTTP_204_NO_CONTENT,
            headers={"Location": _image_location(e.image_id)},
        )

    await db.commit()
    logger.info("Created image", extra={"image_id": image.id, "uploaded_by": admin})

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=ImageResponse.model_validate(image).model_dump(mode="json"),
        headers={"Location": _image_location(image.id)},
    )


@router.put(
    "/images",
    response_model=ImageUploadBatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def put_images(
    files: Annotated[list[UploadFile], File(description="Image files")],
    db: AsyncDbSession,
    store: ImageStoreDep,
    geocoder: GeocoderDep,
    admin: AdminUser,
):
    """
    Upload several images as multipart form data.

    Each file is ingested with the metadata found in its EXIF and committed
    on its own. Files already in the gallery are skipped. A file that is not
    an image stops the batch with 400; files before it stay uploaded.
    """
    items: list[ImageListItem] = []
    skipped: list[str] = []

    for upload in files:
        data = await upload.read()
        try:
            image = await ingest_image(db, store, geocoder, data, ImageMetadata())
        except DuplicateImageError as e:
            logger.info(
                "Skipping duplicate in batch upload",
                extra={"image_id": e.image_id, "upload_name": upload.filename},
            )
            skipped.append(e.image_id)
            continue

        await db.commit()
        items.extend(_list_items([image], can_edit=True))

    logger.info(
        f"Batch upload created {len(items)} images, skipped {len(skipped)}",
        extra={"uploaded_by": admin},
    )
    return ImageUploadBatchResponse(items=items, skipped=skipped)


@router.patch("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def patch_image(
    image_id: str,
    payload: ImagePatch,
    db: AsyncDbSession,
    admin: AdminUser,
) -> Response:
    """Edit image metadata. Requires admin credentials."""
    fields = payload.model_dump(exclude_unset=True, exclude_none=True)
    await update_image(db, image_id, **fields)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_image(
    image_id: str,
    db: AsyncDbSession,
    store: ImageStoreDep,
    admin: AdminUser,
) -> Response:
    """Delete an image row and its file. Requires admin credentials."""
    await delete_image(db, image_id)
    await db.commit()

    try:
        store.delete(image_id)
    except NotFoundError:
        logger.warning("Deleted image had no file", extra={"image_id": image_id})

    logger.info("Deleted image", extra={"image_id": image_id, "deleted_by": admin})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
