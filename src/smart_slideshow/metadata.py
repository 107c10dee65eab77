"""Image dimensions and EXIF/GPS extraction.

``describe`` is the metadata collaborator used by the navigation path: it
never raises, a file that cannot be read simply has no metadata.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image, UnidentifiedImageError

from smart_slideshow.errors import DecodeFailure
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "metadata"})

_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825

_DECODE_ERRORS = (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError)


@dataclass(frozen=True)
class GpsCoordinates:
    """Signed decimal degrees (south and west are negative)."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class ImageMetadata:
    """Display-oriented metadata for one image."""

    pixel_width: int
    pixel_height: int
    capture_time: str | None = None
    camera_make: str | None = None
    camera_model: str | None = None
    gps: GpsCoordinates | None = None
    focal_length: str | None = None
    f_number: str | None = None
    iso: str | None = None
    exposure_time: str | None = None

    @property
    def capture_date(self) -> str | None:
        """``YYYY-MM-DD`` part of the EXIF capture time, when present."""

        if not self.capture_time:
            return None
        date_part = self.capture_time.split(" ", 1)[0]
        return date_part.replace(":", "-") or None


def read_dimensions(path: str | Path) -> tuple[int, int]:
    """Return ``(width, height)`` from the image header.

    Raises:
        DecodeFailure: the file is missing, unreadable, or not an image.
    """

    try:
        with Image.open(path) as image:
            return image.size
    except _DECODE_ERRORS as exc:
        raise DecodeFailure(f"Failed to read dimensions of {path}: {exc}") from exc


def _clean_text(value: Any) -> str | None:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return None
    text = value.replace("\x00", "").strip()
    return text or None


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _to_degrees(value: Any) -> float | None:
    if not isinstance(value, Sequence) or len(value) < 3:
        return None
    d_val, m_val, s_val = (_as_float(part) for part in value[:3])
    if d_val is None or m_val is None or s_val is None:
        return None
    return d_val + (m_val / 60.0) + (s_val / 3600.0)


def _extract_gps(gps_tags: Mapping[str, Any]) -> GpsCoordinates | None:
    latitude = _to_degrees(gps_tags.get("GPSLatitude"))
    longitude = _to_degrees(gps_tags.get("GPSLongitude"))
    if latitude is None or longitude is None:
        return None

    lat_ref = _clean_text(gps_tags.get("GPSLatitudeRef"))
    lon_ref = _clean_text(gps_tags.get("GPSLongitudeRef"))
    if lat_ref and lat_ref.upper() == "S":
        latitude = -latitude
    if lon_ref and lon_ref.upper() == "W":
        longitude = -longitude
    return GpsCoordinates(latitude=latitude, longitude=longitude)


def _format_exposure(value: Any) -> str | None:
    seconds = _as_float(value)
    if seconds is None or seconds <= 0:
        return None
    if seconds < 1:
        return f"1/{round(1 / seconds)}"
    return f"{seconds:g}"


def _format_f_number(value: Any) -> str | None:
    number = _as_float(value)
    if number is None or number <= 0:
        return None
    return f"f/{number:g}"


def _format_focal_length(value: Any) -> str | None:
    length = _as_float(value)
    if length is None or length <= 0:
        return None
    return f"{length:g} mm"


def _format_iso(value: Any) -> str | None:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    number = _as_float(value)
    if number is None:
        return None
    return str(int(number))


def _extract_metadata(image: Image.Image) -> ImageMetadata:
    width, height = image.size
    exif = image.getexif()
    if not exif:
        return ImageMetadata(pixel_width=width, pixel_height=height)

    base = {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in exif.items()}
    detail = {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in exif.get_ifd(_EXIF_IFD).items()}
    gps_raw = exif.get_ifd(_GPS_IFD)
    gps_tags = {ExifTags.GPSTAGS.get(tag_id, str(tag_id)): value for tag_id, value in gps_raw.items()}

    capture_time = _clean_text(detail.get("DateTimeOriginal")) or _clean_text(base.get("DateTime"))

    return ImageMetadata(
        pixel_width=width,
        pixel_height=height,
        capture_time=capture_time,
        camera_make=_clean_text(base.get("Make")),
        camera_model=_clean_text(base.get("Model")),
        gps=_extract_gps(gps_tags) if gps_tags else None,
        focal_length=_format_focal_length(detail.get("FocalLength")),
        f_number=_format_f_number(detail.get("FNumber")),
        iso=_format_iso(detail.get("ISOSpeedRatings") or detail.get("PhotographicSensitivity")),
        exposure_time=_format_exposure(detail.get("ExposureTime")),
    )


def describe(path: str | Path) -> ImageMetadata | None:
    """Return metadata for ``path`` or ``None`` when it cannot be read."""

    try:
        with Image.open(path) as image:
            return _extract_metadata(image)
    except _DECODE_ERRORS as exc:
        LOGGER.info("metadata_unavailable", extra={"source": str(path), "error": str(exc)})
        return None
    except Exception as exc:  # pragma: no cover - malformed EXIF payloads
        LOGGER.warning("metadata_extract_error", extra={"source": str(path), "error": str(exc)})
        return None


__all__ = ["GpsCoordinates", "ImageMetadata", "describe", "read_dimensions"]
