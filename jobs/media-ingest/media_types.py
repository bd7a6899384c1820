"""Media type detection.

A file's type can come from three sources, tried in this order:

1. DeclaredType  - a MIME type we were told (file extension of the staging
                   key first, then the content type storage reported)
2. SniffedType   - the format recognised from the leading bytes
3. ExtensionGuess - the bare extension, when nothing else is known

resolve_media_type() walks that precedence once and returns a ResolvedType
carrying the MediaKind the variant generator switches on.
"""

import io
import logging
import posixpath
from dataclasses import dataclass
from enum import Enum

from PIL import Image, UnidentifiedImageError

from ingest_shared.errors import FatalInputError

logger = logging.getLogger(__name__)

EXTENSION_TO_MIME = {
    "gif": "image/gif",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}

MIME_TO_FORMAT = {
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "image/webp": "webp",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/tiff": "tiff",
    "image/bmp": "bmp",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}

FORMAT_TO_MIME = {
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "tiff": "image/tiff",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}

# Pillow's format names for the few that differ from ours
_PIL_FORMATS = {"jpeg": "jpeg", "mpo": "jpeg", "dib": "bmp"}

ANIMATED_FORMATS = {"gif"}
VECTOR_OR_LEGACY_FORMATS = {"svg", "bmp", "ico"}
VIDEO_FORMATS = {"mp4", "webm", "mov"}


class MediaKind(Enum):
    ANIMATED = "animated"
    VECTOR_OR_LEGACY = "vector_or_legacy"
    RASTER = "raster"
    VIDEO = "video"


@dataclass(frozen=True)
class DeclaredType:
    mime: str


@dataclass(frozen=True)
class SniffedType:
    format: str


@dataclass(frozen=True)
class ExtensionGuess:
    extension: str


MediaTypeSource = DeclaredType | SniffedType | ExtensionGuess


@dataclass(frozen=True)
class ResolvedType:
    kind: MediaKind
    format: str
    mime: str
    source: MediaTypeSource


def extension_of(key: str) -> str | None:
    ext = posixpath.splitext(key)[1]
    return ext[1:].lower() if ext else None


def declared_type_for(key: str, storage_content_type: str | None) -> DeclaredType | None:
    """Pick the declared MIME type of a staged object.

    The extension-derived type wins over the content type storage reports,
    which has been seen to be wrong for GIFs.
    """
    ext = extension_of(key)
    if ext in EXTENSION_TO_MIME:
        return DeclaredType(EXTENSION_TO_MIME[ext])
    if storage_content_type and storage_content_type != "application/octet-stream":
        return DeclaredType(storage_content_type.split(";")[0].strip().lower())
    return None


def sniff_format(data: bytes) -> str | None:
    """Recognise a format from magic bytes, falling back to Pillow."""
    head = data[:1024]
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if head[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if head[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    if head[:2] == b"BM":
        return "bmp"
    if head[:4] == b"\x00\x00\x01\x00":
        return "ico"
    if head[4:8] == b"ftyp":
        return "mov" if head[8:12] == b"qt  " else "mp4"
    if head[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    text = head.lstrip().lower()
    if text.startswith(b"<svg") or (text.startswith(b"<?xml") and b"<svg" in text):
        return "svg"

    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        return None
    return _PIL_FORMATS.get(fmt, fmt) or None


def kind_of(fmt: str) -> MediaKind:
    if fmt in ANIMATED_FORMATS:
        return MediaKind.ANIMATED
    if fmt in VECTOR_OR_LEGACY_FORMATS:
        return MediaKind.VECTOR_OR_LEGACY
    if fmt in VIDEO_FORMATS:
        return MediaKind.VIDEO
    return MediaKind.RASTER


def _from_declared(declared: DeclaredType) -> ResolvedType | None:
    mime = declared.mime.lower()
    fmt = MIME_TO_FORMAT.get(mime)
    if fmt is None and mime.startswith("video/"):
        fmt = mime.split("/", 1)[1]
        return ResolvedType(MediaKind.VIDEO, fmt, mime, declared)
    if fmt is None:
        return None
    return ResolvedType(kind_of(fmt), fmt, mime, declared)


def resolve_media_type(declared: DeclaredType | None, data: bytes,
                       filename: str | None = None) -> ResolvedType:
    """Resolve declared -> sniffed -> extension, or raise FatalInputError."""
    if declared is not None:
        resolved = _from_declared(declared)
        if resolved is not None:
            return resolved
        logger.info(f"Declared type {declared.mime} not recognised, sniffing bytes")

    fmt = sniff_format(data)
    if fmt:
        sniffed = SniffedType(fmt)
        return ResolvedType(kind_of(fmt), fmt, FORMAT_TO_MIME.get(fmt, f"image/{fmt}"), sniffed)

    ext = extension_of(filename) if filename else None
    if ext in EXTENSION_TO_MIME:
        mime = EXTENSION_TO_MIME[ext]
        fmt = MIME_TO_FORMAT[mime]
        return ResolvedType(kind_of(fmt), fmt, mime, ExtensionGuess(ext))

    raise FatalInputError("Unsupported or unrecognised media type")
