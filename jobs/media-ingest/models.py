"""Value types passed between the ingest stages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence


class Variant(str, Enum):
    THUMBNAIL = "thumbnail"
    SMALL = "small"
    REGULAR = "regular"
    ORIGINAL = "original"
    POSTER_FRAME = "posterFrame"
    FULL_SIZE_DISPLAY = "fullSizeDisplay"


# Ordered preferences, first variant present wins.
DISPLAY_PREFERENCE = (Variant.REGULAR, Variant.ORIGINAL, Variant.SMALL)
FULL_SIZE_PREFERENCE = (Variant.FULL_SIZE_DISPLAY, Variant.ORIGINAL)
POSTER_PREFERENCE = (Variant.POSTER_FRAME, Variant.THUMBNAIL)


@dataclass(frozen=True)
class UploadJob:
    staging_key: str
    upload_id: str
    owner_id: str
    is_privileged: bool = False
    title: str | None = None
    category_ref: str | None = None
    location: str | None = None
    camera_model: str | None = None
    coordinates: dict | str | None = None
    tags: Sequence[str] | str | None = None


@dataclass(frozen=True)
class CameraInfo:
    make: str | None = None
    model: str | None = None
    focal_length_mm: float | None = None
    aperture: float | None = None
    shutter_speed: str | None = None
    iso: int | None = None


@dataclass(frozen=True)
class ExtractedMetadata:
    dominant_colors: list[str] = field(default_factory=list)
    camera: CameraInfo = field(default_factory=CameraInfo)


@dataclass(frozen=True)
class VariantSet:
    public_id: str
    urls: Mapping[Variant, str]
    inline_preview: str | None = None
    width: int | None = None
    height: int | None = None
    is_video: bool = False
    video_url: str | None = None
    duration_seconds: float | None = None


def resolve_url(variants: VariantSet, preference: Sequence[Variant]) -> str | None:
    """Return the URL of the first variant in preference that exists."""
    for variant in preference:
        url = variants.urls.get(variant)
        if url:
            return url
    return None


def resolve_display_url(variants: VariantSet) -> str | None:
    """regular -> original -> small."""
    return resolve_url(variants, DISPLAY_PREFERENCE)


def resolve_poster_url(variants: VariantSet) -> str | None:
    """posterFrame -> thumbnail -> the video itself."""
    return resolve_url(variants, POSTER_PREFERENCE) or variants.video_url
