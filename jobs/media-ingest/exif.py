"""Camera/capture metadata from embedded EXIF tags."""

import io
import logging
import math

from PIL import ExifTags, Image

from models import CameraInfo

logger = logging.getLogger(__name__)


def _clean_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip("\x00 \t\r\n")
    return text or None


def _to_float(value) -> float | None:
    """EXIF rationals arrive as IFDRational, (num, den) tuples or numbers."""
    if value is None:
        return None
    try:
        if isinstance(value, tuple):
            if len(value) != 2:
                return None
            number = value[0] / value[1]
        else:
            number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_shutter_speed(seconds: float | None) -> str | None:
    """1/80 for fractions of a second, 2s for longer exposures."""
    if seconds is None or seconds <= 0:
        return None
    if seconds < 1:
        return f"1/{round(1 / seconds)}"
    return f"{seconds:g}s"


def _round1(value: float | None) -> float | None:
    return None if value is None else round(value, 1)


def _iso(value) -> int | None:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    number = _to_float(value)
    return None if number is None else int(round(number))


def extract_camera_info(image_bytes: bytes) -> CameraInfo:
    """Read make, model, focal length, aperture, shutter speed and ISO.

    Tags may live in IFD0 or in the Exif sub-IFD depending on the writer,
    so each lookup tries the sub-IFD first. Raises whatever Pillow raises on
    undecodable input.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        exif = img.getexif()

    if not exif:
        logger.debug("No EXIF data found in image")
        return CameraInfo()

    sub_ifd = exif.get_ifd(ExifTags.IFD.Exif)

    def tag(name):
        tag_id = ExifTags.Base[name].value
        value = sub_ifd.get(tag_id)
        return exif.get(tag_id) if value is None else value

    info = CameraInfo(
        make=_clean_text(tag("Make")),
        model=_clean_text(tag("Model")),
        focal_length_mm=_round1(_to_float(tag("FocalLength"))),
        aperture=_round1(_to_float(tag("FNumber"))),
        shutter_speed=format_shutter_speed(_to_float(tag("ExposureTime"))),
        iso=_iso(tag("ISOSpeedRatings")),
    )
    if any(value is not None for value in vars(info).values()):
        logger.info(f"Extracted EXIF data: {info}")
    return info
