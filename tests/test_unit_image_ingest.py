"""
Tests for the upload pipeline.

Tests cover:
- File storage plus row creation with decoded dimensions
- Capture time and coordinates from EXIF unless the client sends them
- Reverse geocoding only when coordinates and a geocoder are present
- Partial geocoding results kept on failure
- Duplicate uploads and cleanup after a failed insert
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.errors import DuplicateImageError, GeocodeError, ValidationError
from app.db.models import Image
from app.services.geocode import GeocodeClient
from app.services.image_ingest import EPOCH, ImageMetadata, ingest_image
from tests.conftest import geocode_transport, jpeg_bytes, make_exif, png_bytes


class TestIngestImage:
    @pytest.mark.anyio
    async def test_stores_file_and_row(self, async_db_session, image_store):
        data = png_bytes("ingest", size=(8, 6))
        metadata = ImageMetadata(created_at=datetime(2023, 7, 1, 9, 30), thumbhash="abc")

        image = await ingest_image(async_db_session, image_store, None, data, metadata)

        assert image_store.read(image.id) == data
        row = await async_db_session.get(Image, image.id)
        assert row.file_name == f"{image.id}.png"
        assert row.mime_type == "image/png"
        assert (row.width, row.height, row.thumbhash) == (8, 6, "abc")
        assert row.created_at == datetime(2023, 7, 1, 9, 30)

    @pytest.mark.anyio
    async def test_missing_capture_time_defaults_to_epoch(self, async_db_session, image_store):
        image = await ingest_image(
            async_db_session, image_store, None, jpeg_bytes("epoch"), ImageMetadata()
        )
        assert image.created_at == EPOCH

    @pytest.mark.anyio
    async def test_aware_capture_time_is_normalized_to_utc(self, async_db_session, image_store):
        metadata = ImageMetadata(created_at=datetime(2023, 7, 1, 12, 0, tzinfo=UTC))

        image = await ingest_image(
            async_db_session, image_store, None, jpeg_bytes("aware"), metadata
        )

        assert image.created_at == datetime(2023, 7, 1, 12, 0)

    @pytest.mark.anyio
    async def test_geocodes_when_coordinates_present(
        self, async_db_session, image_store, geocoder
    ):
        metadata = ImageMetadata(lat=-33.45, long=-70.66)

        image = await ingest_image(
            async_db_session, image_store, geocoder, png_bytes("geo"), metadata
        )

        assert (image.locality, image.country) == ("Santiago", "Chile")

    @pytest.mark.anyio
    async def test_zero_coordinate_skips_geocoding(self, async_db_session, image_store):
        geocoder = AsyncMock(spec=GeocodeClient)

        image = await ingest_image(
            async_db_session,
            image_store,
            geocoder,
            png_bytes("equator"),
            ImageMetadata(lat=0.0, long=-70.66),
        )

        geocoder.lookup.assert_not_called()
        assert image.country == ""

    @pytest.mark.anyio
    async def test_partial_geocode_result_is_kept(self, async_db_session, image_store):
        payload = {
            "status": "OK",
            "results": [
                {"address_components": [{"long_name": "Chile", "types": ["country"]}]}
            ],
        }
        async with httpx.AsyncClient(transport=geocode_transport(payload)) as http:
            geocoder = GeocodeClient("k", url="https://geocode.test/json", http_client=http)
            image = await ingest_image(
                async_db_session,
                image_store,
                geocoder,
                png_bytes("partial"),
                ImageMetadata(lat=-20.0, long=-70.0),
            )

        assert (image.locality, image.country) == ("", "Chile")

    @pytest.mark.anyio
    async def test_geocode_failure_does_not_fail_upload(self, async_db_session, image_store):
        geocoder = AsyncMock(spec=GeocodeClient)
        geocoder.lookup.side_effect = GeocodeError("Geocoding request failed")

        image = await ingest_image(
            async_db_session,
            image_store,
            geocoder,
            png_bytes("offline"),
            ImageMetadata(lat=1.5, long=2.5),
        )

        assert image.country == ""
        assert image.lat == 1.5

    @pytest.mark.anyio
    async def test_duplicate_upload_raises_and_keeps_file(self, async_db_session, image_store):
        data = png_bytes("twice")
        first = await ingest_image(async_db_session, image_store, None, data, ImageMetadata())

        with pytest.raises(DuplicateImageError) as exc_info:
            await ingest_image(async_db_session, image_store, None, data, ImageMetadata())

        assert exc_info.value.image_id == first.id
        assert image_store.read(first.id) == data

    @pytest.mark.anyio
    async def test_leftover_file_without_row_is_replaced(self, async_db_session, image_store):
        data = png_bytes("leftover")
        image_store.save(data)

        image = await ingest_image(async_db_session, image_store, None, data, ImageMetadata())

        assert image_store.read(image.id) == data

    @pytest.mark.anyio
    async def test_failed_insert_removes_file(self, async_db_session, image_store):
        data = png_bytes("rollback")

        with patch(
            "app.services.image_ingest.save_image",
            AsyncMock(side_effect=RuntimeError("database is locked")),
        ):
            with pytest.raises(RuntimeError):
                await ingest_image(async_db_session, image_store, None, data, ImageMetadata())

        assert list(image_store.root.iterdir()) == []

    @pytest.mark.anyio
    async def test_rejects_non_image_bytes(self, async_db_session, image_store):
        with pytest.raises(ValidationError):
            await ingest_image(
                async_db_session, image_store, None, b"not an image", ImageMetadata()
            )

    @pytest.mark.anyio
    async def test_rejects_truncated_image_and_writes_nothing(
        self, async_db_session, image_store
    ):
        data = png_bytes("truncated", size=(32, 32))

        with pytest.raises(ValidationError, match="could not be decoded"):
            await ingest_image(
                async_db_session, image_store, None, data[:40], ImageMetadata()
            )

        assert list(image_store.root.iterdir()) == []


class TestExifMetadata:
    @pytest.mark.anyio
    async def test_capture_time_read_from_exif(self, async_db_session, image_store):
        data = jpeg_bytes("exif-time", exif=make_exif(taken_at="2021:12:24 18:05:00"))

        image = await ingest_image(async_db_session, image_store, None, data, ImageMetadata())

        assert image.created_at == datetime(2021, 12, 24, 18, 5)

    @pytest.mark.anyio
    async def test_client_capture_time_overrides_exif(self, async_db_session, image_store):
        data = jpeg_bytes("exif-override", exif=make_exif(taken_at="2021:12:24 18:05:00"))
        metadata = ImageMetadata(created_at=datetime(2022, 1, 2, 3, 4))

        image = await ingest_image(async_db_session, image_store, None, data, metadata)

        assert image.created_at == datetime(2022, 1, 2, 3, 4)

    @pytest.mark.anyio
    async def test_exif_position_is_geocoded(self, async_db_session, image_store, geocoder):
        data = jpeg_bytes("exif-gps", exif=make_exif(lat=-33.45, lng=-70.65))

        image = await ingest_image(
            async_db_session, image_store, geocoder, data, ImageMetadata()
        )

        assert image.lat == pytest.approx(-33.45, abs=1e-4)
        assert image.long == pytest.approx(-70.65, abs=1e-4)
        assert (image.locality, image.country) == ("Santiago", "Chile")

    @pytest.mark.anyio
    async def test_client_coordinates_override_exif(self, async_db_session, image_store):
        geocoder = AsyncMock(spec=GeocodeClient)
        geocoder.lookup.side_effect = GeocodeError("Geocoding request failed")
        data = jpeg_bytes("exif-coords", exif=make_exif(lat=-33.45, lng=-70.65))

        image = await ingest_image(
            async_db_session, image_store, geocoder, data, ImageMetadata(lat=10.0, long=20.0)
        )

        geocoder.lookup.assert_awaited_once_with(10.0, 20.0)
        assert (image.lat, image.long) == (10.0, 20.0)


def test_has_location_requires_both_coordinates():
    assert ImageMetadata(lat=1.0, long=2.0).has_location
    assert not ImageMetadata(lat=1.0).has_location
    assert not ImageMetadata(long=2.0).has_location
