"""Builds the catalog record for a finished upload."""

import json
import logging
import re
from datetime import datetime, timezone

from models import (
    FULL_SIZE_PREFERENCE,
    ExtractedMetadata,
    UploadJob,
    Variant,
    VariantSet,
    resolve_display_url,
    resolve_poster_url,
    resolve_url,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_TAG_LENGTH = 50
MAX_TAGS = 20

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def parse_tags(tags) -> list[str]:
    """Trim, lowercase, drop empty/overlong, dedupe keeping first occurrence, cap at 20.

    Accepts a list or a JSON-encoded list string; anything else yields [].
    """
    if not tags:
        return []
    if isinstance(tags, str):
        try:
            tags = json.loads(tags)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid tags format: {e}")
            return []
    if not isinstance(tags, (list, tuple)):
        return []

    seen = set()
    result = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if not tag or len(tag) > MAX_TAG_LENGTH or tag in seen:
            continue
        seen.add(tag)
        result.append(tag)
    return result[:MAX_TAGS]


def validate_coordinates(coordinates) -> dict | None:
    """Return {latitude, longitude} inside WGS84 bounds, or None."""
    if not coordinates:
        return None
    if isinstance(coordinates, str):
        try:
            coordinates = json.loads(coordinates)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid coordinates format: {e}")
            return None
    if not isinstance(coordinates, dict):
        return None

    try:
        lat = float(coordinates.get("latitude"))
        lng = float(coordinates.get("longitude"))
    except (TypeError, ValueError):
        return None

    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        logger.warning(f"Coordinates out of range: {lat}, {lng}")
        return None
    return {"latitude": lat, "longitude": lng}


def normalize_category(category_ref: str | None) -> str | None:
    if not category_ref:
        return None
    category_ref = str(category_ref).strip()
    if not category_ref:
        return None
    if not OBJECT_ID_RE.match(category_ref):
        logger.error(f"Invalid category id: {category_ref}")
        return None
    return category_ref


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def build_catalog_record(job: UploadJob, variants: VariantSet,
                         metadata: ExtractedMetadata) -> dict:
    """Initial field set of the catalog record, in the store's document shape.

    Fields that would be empty are left out rather than stored as null.
    """
    camera = metadata.camera
    title = _clean(job.title)

    record = {
        "publicId": variants.public_id,
        "imageUrl": variants.urls.get(Variant.ORIGINAL),
        "thumbnailUrl": variants.urls.get(Variant.THUMBNAIL),
        "smallUrl": variants.urls.get(Variant.SMALL),
        "regularUrl": resolve_display_url(variants),
        "imageAvifUrl": resolve_url(variants, FULL_SIZE_PREFERENCE),
        "base64Thumbnail": variants.inline_preview,
        "imageTitle": title[:MAX_TITLE_LENGTH] if title else None,
        "imageCategory": normalize_category(job.category_ref),
        "uploadedBy": job.owner_id,
        "location": _clean(job.location),
        "coordinates": validate_coordinates(job.coordinates),
        "width": variants.width,
        "height": variants.height,
        "cameraMake": camera.make,
        "cameraModel": camera.model or _clean(job.camera_model),
        "focalLength": camera.focal_length_mm,
        "aperture": camera.aperture,
        "shutterSpeed": camera.shutter_speed,
        "iso": camera.iso,
        "dominantColors": metadata.dominant_colors or None,
        "tags": parse_tags(job.tags) or None,
        "moderationStatus": "approved" if job.is_privileged else "pending",
        "isModerated": job.is_privileged,
        "isVideo": variants.is_video,
    }

    if variants.is_video and variants.video_url:
        record["videoUrl"] = variants.video_url
        record["videoThumbnail"] = resolve_poster_url(variants)
        record["videoDuration"] = variants.duration_seconds or None

    if job.is_privileged:
        record["moderatedAt"] = datetime.now(timezone.utc).isoformat()
        record["moderatedBy"] = job.owner_id

    return {key: value for key, value in record.items() if value is not None}


def record_urls(record: dict) -> set[str]:
    """Every storage URL a catalog record points at."""
    fields = ("imageUrl", "thumbnailUrl", "smallUrl", "regularUrl",
              "imageAvifUrl", "videoUrl", "videoThumbnail")
    return {record[name] for name in fields if record.get(name)}
