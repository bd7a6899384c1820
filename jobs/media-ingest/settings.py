"""Runtime settings for media-ingest, read from env vars."""

import os
from dataclasses import dataclass

MB = 1024 * 1024

RAW_UPLOAD_FOLDER = "photo-app-raw"
IMAGE_FOLDER = "photo-app-images"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


@dataclass(frozen=True)
class IngestSettings:
    concurrency: int = 2
    enable_gif_to_video: bool = True
    transcode_timeout_seconds: float = 300.0
    sweep_interval_hours: float = 6.0
    staging_max_age_hours: float = 24.0
    max_upload_size_mb: int = 10
    allowed_file_types: tuple[str, ...] = ("jpg", "jpeg", "png", "webp")

    @classmethod
    def from_env(cls) -> "IngestSettings":
        allowed = os.environ.get("ALLOWED_FILE_TYPES")
        return cls(
            concurrency=max(1, int(os.environ.get("INGEST_CONCURRENCY", "2"))),
            enable_gif_to_video=_env_bool("ENABLE_GIF_TO_VIDEO", True),
            transcode_timeout_seconds=float(os.environ.get("TRANSCODE_TIMEOUT_SECONDS", "300")),
            sweep_interval_hours=float(os.environ.get("STAGING_SWEEP_INTERVAL_HOURS", "6")),
            staging_max_age_hours=float(os.environ.get("STAGING_MAX_AGE_HOURS", "24")),
            max_upload_size_mb=int(os.environ.get("MAX_UPLOAD_SIZE_MB", "10")),
            allowed_file_types=(
                tuple(t.strip().lower() for t in allowed.split(",") if t.strip())
                if allowed else cls.allowed_file_types
            ),
        )
