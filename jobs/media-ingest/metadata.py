"""Concurrent metadata extraction with per-extractor degradation."""

import asyncio
import logging

from colors import extract_dominant_colors
from exif import extract_camera_info
from models import CameraInfo, ExtractedMetadata

logger = logging.getLogger(__name__)


async def _colors(image_bytes: bytes) -> list[str]:
    try:
        return await asyncio.to_thread(extract_dominant_colors, image_bytes)
    except Exception as e:
        logger.warning(f"Failed to extract colors: {e}")
        return []


async def _camera(image_bytes: bytes) -> CameraInfo:
    try:
        return await asyncio.to_thread(extract_camera_info, image_bytes)
    except Exception as e:
        logger.warning(f"Failed to extract EXIF: {e}")
        return CameraInfo()


async def extract_metadata(image_bytes: bytes) -> ExtractedMetadata:
    """Run both extractors concurrently; neither can fail the job."""
    dominant_colors, camera = await asyncio.gather(_colors(image_bytes), _camera(image_bytes))
    return ExtractedMetadata(dominant_colors=dominant_colors, camera=camera)
