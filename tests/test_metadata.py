"""Tests for dimension and EXIF extraction."""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from smart_slideshow.errors import DecodeFailure
from smart_slideshow.metadata import GpsCoordinates, ImageMetadata, _extract_gps, describe, read_dimensions


def test_read_dimensions_uses_the_header(tmp_path: Path, make_image) -> None:
    """Dimensions come from the image header."""

    path = make_image(tmp_path / "a.png", size=(640, 480))

    assert read_dimensions(path) == (640, 480)


def test_read_dimensions_raises_decode_failure(tmp_path: Path) -> None:
    """Unreadable images raise DecodeFailure."""

    with pytest.raises(DecodeFailure):
        read_dimensions(tmp_path / "missing.jpg")


def test_describe_without_exif_reports_pixel_size(tmp_path: Path, make_image) -> None:
    """Images without EXIF still report their pixel size."""

    path = make_image(tmp_path / "plain.png", size=(12, 8))

    metadata = describe(path)

    assert metadata == ImageMetadata(pixel_width=12, pixel_height=8)


def test_describe_reads_camera_and_capture_time(tmp_path: Path) -> None:
    """Camera make, model, and capture time are read from EXIF."""

    exif = Image.Exif()
    exif[0x010F] = "Canon"
    exif[0x0110] = "EOS R5"
    exif[0x0132] = "2023:05:15 10:20:30"
    path = tmp_path / "tagged.jpg"
    Image.new("RGB", (20, 10), color="blue").save(path, exif=exif)

    metadata = describe(path)

    assert metadata is not None
    assert metadata.camera_make == "Canon"
    assert metadata.camera_model == "EOS R5"
    assert metadata.capture_time == "2023:05:15 10:20:30"
    assert metadata.capture_date == "2023-05-15"
    assert (metadata.pixel_width, metadata.pixel_height) == (20, 10)


def test_describe_returns_none_for_unreadable_files(tmp_path: Path) -> None:
    """Unreadable files describe as None instead of raising."""

    bogus = tmp_path / "broken.jpg"
    bogus.write_bytes(b"\x00\x01\x02")

    assert describe(bogus) is None
    assert describe(tmp_path / "missing.jpg") is None


def test_gps_is_signed_by_hemisphere() -> None:
    """Southern and western coordinates come back negative."""

    gps = _extract_gps(
        {
            "GPSLatitudeRef": "S",
            "GPSLatitude": (33.0, 52.0, 4.0),
            "GPSLongitudeRef": "W",
            "GPSLongitude": (70.0, 30.0, 0.0),
        }
    )

    assert gps is not None
    assert gps.latitude == pytest.approx(-(33 + 52 / 60 + 4 / 3600))
    assert gps.longitude == pytest.approx(-70.5)


def test_incomplete_gps_is_dropped() -> None:
    """GPS data missing a coordinate is ignored."""

    assert _extract_gps({"GPSLatitude": (1.0, 2.0, 3.0)}) is None
    assert GpsCoordinates(1.0, 2.0).latitude == 1.0
