"""Staging-phase operations: issue upload URLs, discard staged files, and
validate finalize requests before they reach the queue."""

import asyncio
import logging
import re
import secrets
import time

from ingest_shared.errors import TransientExternalError, ValidationError
from ingest_shared.r2 import delete_from_r2, presign_upload_url
from models import UploadJob
from record import OBJECT_ID_RE
from settings import MB, RAW_UPLOAD_FOLDER, IngestSettings

logger = logging.getLogger(__name__)

UPLOAD_ID_RE = re.compile(r"^image-\d+-[a-f0-9]{8}$")
URL_EXPIRES_IN = 300
MAX_FILE_NAME_LENGTH = 255

MIME_TO_EXTENSIONS = {
    "image/jpeg": ("jpg", "jpeg"),
    "image/jpg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/webp": ("webp",),
    "image/gif": ("gif",),
    "image/svg+xml": ("svg",),
    "image/bmp": ("bmp",),
    "image/x-icon": ("ico",),
    "image/vnd.microsoft.icon": ("ico",),
    "video/mp4": ("mp4",),
    "video/webm": ("webm",),
    "video/quicktime": ("mov",),
}

EXTENSION_ALIASES = {"jpeg": "jpg", "svg+xml": "svg"}


def generate_upload_id() -> str:
    return f"image-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def file_extension(file_name: str = "", file_type: str = "") -> str:
    """Extension from the file name, else from the MIME subtype, else 'bin'."""
    if "." in file_name:
        ext = file_name.rsplit(".", 1)[1].lower()
        if len(ext) <= 5 and re.fullmatch(r"[a-z0-9]+", ext):
            return ext
    if "/" in file_type:
        subtype = file_type.split("/", 1)[1].lower()
        if re.fullmatch(r"[a-z0-9+\-]+", subtype):
            return EXTENSION_ALIASES.get(subtype, subtype)
    return "bin"


def is_allowed_file_type(file_type: str, file_name: str, allowed: tuple[str, ...]) -> bool:
    """Allowed if either the file name's extension or the MIME type's is listed."""
    name_ext = file_name.rsplit(".", 1)[1].lower() if "." in file_name else None
    if name_ext and name_ext in allowed:
        return True
    return any(ext in allowed for ext in MIME_TO_EXTENSIONS.get(file_type.lower(), ()))


def _text(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_finalize(data: dict) -> UploadJob:
    """Validate a finalize request and turn it into an UploadJob.

    Cheap checks only; nothing is downloaded here.
    """
    upload_id = data.get("uploadId")
    upload_key = data.get("uploadKey")
    if not upload_id or not upload_key:
        raise ValidationError("uploadId and uploadKey required")
    if not UPLOAD_ID_RE.match(str(upload_id)):
        raise ValidationError("uploadId invalid")
    if not str(upload_key).startswith(f"{RAW_UPLOAD_FOLDER}/"):
        raise ValidationError("uploadKey must point at the staging folder")

    owner_id = _text(data.get("userId"))
    if not owner_id:
        raise ValidationError("userId required")

    is_privileged = bool(data.get("isAdmin"))
    category = _text(data.get("imageCategory"))
    if is_privileged and not category:
        raise ValidationError("imageCategory required for admin users")
    if category and not OBJECT_ID_RE.match(category):
        raise ValidationError("imageCategory invalid")

    return UploadJob(
        staging_key=str(upload_key),
        upload_id=str(upload_id),
        owner_id=owner_id,
        is_privileged=is_privileged,
        title=_text(data.get("imageTitle")),
        category_ref=category,
        location=_text(data.get("location")),
        camera_model=_text(data.get("cameraModel")),
        coordinates=data.get("coordinates"),
        tags=data.get("tags"),
    )


class UploadSessions:
    """Request/reply handlers for the staging phase, before any job exists."""

    def __init__(self, settings: IngestSettings):
        self.settings = settings

    async def request_upload_url(self, data: dict) -> dict:
        file_name = str(data.get("fileName") or "")
        file_type = str(data.get("fileType") or "")
        file_size = data.get("fileSize")

        if not file_name or not file_type or file_size is None:
            raise ValidationError("fileName, fileType and fileSize required")
        if len(file_name) > MAX_FILE_NAME_LENGTH:
            raise ValidationError("fileName too long")
        if not file_type.startswith(("image/", "video/")):
            raise ValidationError("File must be an image or a video")

        max_bytes = self.settings.max_upload_size_mb * MB
        try:
            size = float(file_size)
        except (TypeError, ValueError):
            size = -1
        if size <= 0 or size > max_bytes:
            raise ValidationError(f"File too large, max {self.settings.max_upload_size_mb}MB")

        if not is_allowed_file_type(file_type, file_name, self.settings.allowed_file_types):
            allowed = ", ".join(self.settings.allowed_file_types)
            raise ValidationError(f"File type not allowed. Allowed types: {allowed}")

        upload_id = generate_upload_id()
        upload_key = f"{RAW_UPLOAD_FOLDER}/{upload_id}.{file_extension(file_name, file_type)}"
        upload_url = await asyncio.to_thread(presign_upload_url, upload_key, file_type, URL_EXPIRES_IN)
        logger.info(f"Issued upload URL for {upload_key}")
        return {
            "uploadId": upload_id,
            "uploadKey": upload_key,
            "uploadUrl": upload_url,
            "expiresIn": URL_EXPIRES_IN,
            "maxFileSize": max_bytes,
        }

    async def discard(self, data: dict) -> dict:
        """Delete a staged file the user removed before finalizing."""
        upload_key = data.get("uploadKey")
        if not upload_key:
            raise ValidationError("uploadKey required")
        if not str(upload_key).startswith(f"{RAW_UPLOAD_FOLDER}/"):
            raise ValidationError("Not allowed to delete this file")

        try:
            await asyncio.to_thread(delete_from_r2, upload_key)
        except TransientExternalError as e:
            logger.error(f"Failed to delete pre-uploaded file {upload_key}: {e}")
            return {"deleted": False, "error": "Could not delete file, please retry"}
        logger.info(f"Deleted pre-uploaded file: {upload_key}")
        return {"deleted": True}
