"""Unit tests for the filesystem image store and upload decoding."""

from datetime import datetime
from io import BytesIO

import pytest
from PIL import Image as PILImage

from app.core.errors import DuplicateImageError, NotFoundError, ValidationError
from app.services.image_store import (
    ID_LENGTH,
    FilesystemImageStore,
    compute_image_id,
    decode_image,
)
from tests.conftest import jpeg_bytes, make_exif, png_bytes


def _encode(image_format: str, size: tuple[int, int] = (2, 2), mode: str = "RGB") -> bytes:
    buf = BytesIO()
    PILImage.new(mode, size).save(buf, image_format)
    return buf.getvalue()


class TestDecodeImage:
    @pytest.mark.parametrize(
        "image_format,mode,expected",
        [
            ("JPEG", "RGB", ("jpeg", "image/jpeg")),
            ("PNG", "RGB", ("png", "image/png")),
            ("GIF", "P", ("gif", "image/gif")),
            ("WEBP", "RGB", ("webp", "image/webp")),
        ],
    )
    def test_detects_supported_formats(self, image_format, mode, expected):
        decoded = decode_image(_encode(image_format, mode=mode))
        assert (decoded.ext, decoded.mime_type) == expected

    def test_reads_dimensions_from_the_pixels(self):
        decoded = decode_image(png_bytes("wide", size=(640, 480)))
        assert (decoded.width, decoded.height) == (640, 480)

    def test_magic_bytes_alone_are_not_an_image(self):
        with pytest.raises(ValidationError, match="could not be decoded"):
            decode_image(b"\x89PNG\r\n\x1a\n" + b"garbage")

    def test_truncated_image_is_rejected(self):
        data = jpeg_bytes("cut", size=(64, 64))
        with pytest.raises(ValidationError):
            decode_image(data[: len(data) // 2])

    @pytest.mark.parametrize("data", [b"%PDF-1.7", b"RIFF\x24\x00\x00\x00WAVEfmt ", b""])
    def test_rejects_other_data(self, data):
        with pytest.raises(ValidationError):
            decode_image(data)

    def test_rejects_decodable_but_unsupported_format(self):
        with pytest.raises(ValidationError, match="Unsupported image format") as exc_info:
            decode_image(_encode("BMP"))
        assert exc_info.value.details["format"] == "BMP"

    def test_reads_exif_capture_time_and_position(self):
        exif = make_exif(taken_at="2023:05:01 10:30:00", lat=-33.45, lng=-70.65)

        decoded = decode_image(jpeg_bytes("exif", exif=exif))

        assert decoded.taken_at == datetime(2023, 5, 1, 10, 30)
        assert decoded.lat == pytest.approx(-33.45, abs=1e-4)
        assert decoded.long == pytest.approx(-70.65, abs=1e-4)

    def test_northern_and_eastern_coordinates_are_positive(self):
        decoded = decode_image(jpeg_bytes("east", exif=make_exif(lat=48.8584, lng=2.2945)))

        assert decoded.lat == pytest.approx(48.8584, abs=1e-4)
        assert decoded.long == pytest.approx(2.2945, abs=1e-4)

    def test_missing_exif_leaves_fields_empty(self):
        decoded = decode_image(png_bytes("plain"))
        assert decoded.taken_at is None
        assert (decoded.lat, decoded.long) == (0.0, 0.0)

    def test_unparseable_exif_date_is_ignored(self):
        decoded = decode_image(jpeg_bytes("baddate", exif=make_exif(taken_at="yesterday")))
        assert decoded.taken_at is None


def test_image_id_is_sha256_prefix():
    image_id = compute_image_id(b"hello")
    assert image_id == "2cf24dba5fb0"
    assert len(image_id) == ID_LENGTH


class TestFilesystemImageStore:
    def test_creates_root_directory(self, tmp_path):
        root = tmp_path / "nested" / "uploads"
        FilesystemImageStore(root)
        assert root.is_dir()

    def test_save_writes_content_addressed_file(self, image_store):
        data = png_bytes("one")

        stored = image_store.save(data)

        assert stored.id == compute_image_id(data)
        assert stored.file_name == f"{stored.id}.png"
        assert stored.mime_type == "image/png"
        assert (stored.image.width, stored.image.height) == (4, 3)
        assert stored.size == len(data)
        assert (image_store.root / stored.file_name).read_bytes() == data

    def test_save_same_file_twice_is_duplicate(self, image_store):
        stored = image_store.save(jpeg_bytes("dup"))

        with pytest.raises(DuplicateImageError) as exc_info:
            image_store.save(jpeg_bytes("dup"))

        assert exc_info.value.image_id == stored.id

    def test_save_with_overwrite_replaces_file(self, image_store):
        data = png_bytes("again")
        image_store.save(data)

        stored = image_store.save(data, overwrite=True)

        assert image_store.read(stored.id) == data
        assert len(list(image_store.root.iterdir())) == 1

    def test_save_rejects_empty_and_unknown_data(self, image_store):
        with pytest.raises(ValidationError, match="empty"):
            image_store.save(b"")
        with pytest.raises(ValidationError):
            image_store.save(b"plain text, not an image")
        with pytest.raises(ValidationError):
            image_store.save(b"\x89PNG\r\n\x1a\n" + b"garbage")
        assert list(image_store.root.iterdir()) == []

    def test_read_missing_raises_not_found(self, image_store):
        with pytest.raises(NotFoundError):
            image_store.read("0123456789ab")

    def test_ids_that_are_not_hex_never_match(self, image_store):
        image_store.save(png_bytes("glob"))
        with pytest.raises(NotFoundError):
            image_store.read("*")
        with pytest.raises(NotFoundError):
            image_store.read("../../etc/pa")

    def test_delete_removes_file(self, image_store):
        stored = image_store.save(png_bytes("bye"))

        image_store.delete(stored.id)

        with pytest.raises(NotFoundError):
            image_store.read(stored.id)
        with pytest.raises(NotFoundError):
            image_store.delete(stored.id)
