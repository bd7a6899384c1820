"""
Upload pipeline - one run per UploadJob.

  STAGED -> DOWNLOADED -> METADATA_EXTRACTED | METADATA_SKIPPED
         -> VARIANTS_GENERATED -> CATALOGED -> STAGING_CLEANED -> NOTIFIED

Any failure before CATALOGED moves to FAILED, deletes whatever this job
wrote to storage (ROLLED_BACK) and notifies the owner. Staging cleanup and
notifications never fail the job.
"""

import asyncio
import logging
import posixpath
import time
from dataclasses import dataclass
from enum import Enum

from catalog import CatalogStore
from ingest_shared.errors import FatalInputError, ObjectNotFoundError
from ingest_shared.r2 import delete_quietly, download_from_r2
from ledger import StorageLedger
from media_types import EXTENSION_TO_MIME, MediaKind, declared_type_for, resolve_media_type
from metadata import extract_metadata
from models import ExtractedMetadata, UploadJob
from notifications import UPLOAD_COMPLETED, UPLOAD_FAILED, Notifier
from record import build_catalog_record
from settings import MB, RAW_UPLOAD_FOLDER
from variants import VariantGenerator, is_large_animated

logger = logging.getLogger(__name__)


class Stage(Enum):
    STAGED = "staged"
    DOWNLOADED = "downloaded"
    METADATA_EXTRACTED = "metadata_extracted"
    METADATA_SKIPPED = "metadata_skipped"
    VARIANTS_GENERATED = "variants_generated"
    CATALOGED = "cataloged"
    STAGING_CLEANED = "staging_cleaned"
    NOTIFIED = "notified"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class PipelineResult:
    image_id: str
    public_id: str
    stages: tuple[Stage, ...]


def public_id_for(staging_key: str) -> str:
    """photo-app-raw/image-1-abc.gif -> image-1-abc"""
    name = staging_key.replace("\\", "-").replace("/", "-")
    prefix = f"{RAW_UPLOAD_FOLDER}-"
    if name.startswith(prefix):
        name = name[len(prefix):]
    stem, ext = posixpath.splitext(name)
    if ext[1:].lower() in EXTENSION_TO_MIME:
        return stem
    return name


def failure_reason(exc: Exception) -> str:
    if isinstance(exc, ObjectNotFoundError):
        return "Raw upload not found in storage"
    if isinstance(exc, FatalInputError):
        return f"Unsupported or corrupt file: {exc}"
    return str(exc) or "Unknown error"


class UploadPipeline:
    def __init__(self, generator: VariantGenerator, catalog: CatalogStore, notifier: Notifier):
        self.generator = generator
        self.catalog = catalog
        self.notifier = notifier

    async def run(self, job: UploadJob) -> PipelineResult:
        started = time.monotonic()
        stages = [Stage.STAGED]
        timings = {}
        public_id = public_id_for(job.staging_key)
        ledger = StorageLedger(job.upload_id)

        def advance(stage: Stage, since: float | None = None):
            stages.append(stage)
            if since is not None:
                timings[stage.value] = int((time.monotonic() - since) * 1000)
            logger.info(f"[{job.upload_id}] {stage.value}")

        try:
            t = time.monotonic()
            raw = await asyncio.to_thread(download_from_r2, job.staging_key)
            advance(Stage.DOWNLOADED, t)

            declared = declared_type_for(job.staging_key, raw.content_type)
            resolved = resolve_media_type(declared, raw.body, job.staging_key)
            logger.info(
                f"[{job.upload_id}] {job.staging_key}: {len(raw.body) / MB:.2f}MB, "
                f"storage type={raw.content_type or 'none'}, resolved={resolved.mime}"
            )

            t = time.monotonic()
            if resolved.kind is MediaKind.VIDEO or is_large_animated(resolved, len(raw.body)):
                metadata = ExtractedMetadata()
                advance(Stage.METADATA_SKIPPED)
            else:
                metadata = await extract_metadata(raw.body)
                advance(Stage.METADATA_EXTRACTED, t)

            t = time.monotonic()
            variants = await self.generator.generate(
                raw.body, declared, public_id, ledger, filename=job.staging_key
            )
            advance(Stage.VARIANTS_GENERATED, t)

            t = time.monotonic()
            record = build_catalog_record(job, variants, metadata)
            created = await self.catalog.create(record)
            advance(Stage.CATALOGED, t)
        except Exception as e:
            advance(Stage.FAILED)
            logger.error(f"[{job.upload_id}] pipeline failed after {stages[-2].value}: {e}")
            if ledger.keys:
                await ledger.rollback()
                advance(Stage.ROLLED_BACK)
            self.notifier.notify(
                job.owner_id,
                UPLOAD_FAILED,
                {"imageTitle": job.title, "error": failure_reason(e)},
            )
            advance(Stage.NOTIFIED)
            raise

        image_id = str(created["id"])
        if await asyncio.to_thread(delete_quietly, job.staging_key):
            advance(Stage.STAGING_CLEANED)
        else:
            logger.warning(f"[{job.upload_id}] staging object left for the orphan sweep")

        self.notifier.invalidate_cache()
        self.notifier.notify(job.owner_id, UPLOAD_COMPLETED, {"imageTitle": job.title}, image=image_id)
        advance(Stage.NOTIFIED)

        total_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[{job.upload_id}] complete in {total_ms}ms {timings}")
        return PipelineResult(image_id=image_id, public_id=public_id, stages=tuple(stages))
