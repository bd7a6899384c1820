"""
media-ingest - Turns finalized raw uploads into published images/videos.

Answers 'media.upload-finalized' requests over core NATS: validates the
request, hands an UploadJob to the in-process IngestQueue and replies with
{accepted, queueDepth}, or {error} when the request is invalid. The queue
downloads the staged file from R2, extracts metadata, generates variants (or
a video for large GIFs), creates the catalog record and notifies the owner.

Also pulls 'media.asset-deleted' from NATS JetStream (delete every stored
size of an asset), answers 'media.upload-url' / 'media.upload-discard'
requests for the staging phase, and sweeps abandoned staging files every few
hours.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial

from ingest_shared.errors import ValidationError
from ingest_shared.nats_consumer import ConsumerApp, run_consumer
from ingest_shared.r2 import delete_asset_from_r2

from background import wait_background
from catalog import NatsCatalogStore
from job_queue import IngestQueue
from notifications import Notifier
from pipeline import UploadPipeline
from settings import IMAGE_FOLDER, IngestSettings
from sweep import StagingSweeper
from transcoder import Transcoder
from uploads import UploadSessions, parse_finalize
from variants import VariantGenerator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FINALIZED_SUBJECT = "media.upload-finalized"
ASSET_DELETED_SUBJECT = "media.asset-deleted"
UPLOAD_URL_SUBJECT = "media.upload-url"
UPLOAD_DISCARD_SUBJECT = "media.upload-discard"


async def handle_finalize(data: dict, *, queue: IngestQueue) -> dict:
    """Answer a finalize request with the acceptance.

    ValidationError propagates so the responder replies {"error": ...}.
    A queue that is shutting down replies accepted=False and the client
    retries against another instance.
    """
    job = parse_finalize(data)
    acceptance = queue.enqueue(job)
    if acceptance.accepted:
        logger.info(f"Accepted {job.upload_id} (queue depth {acceptance.queue_depth})")
    return acceptance.as_dict()


async def handle_asset_deleted(data: dict, publish, *, folder: str = IMAGE_FOLDER):
    """Handle an asset-deleted message: remove every stored size."""
    public_id = data.get("publicId")
    if not public_id:
        raise ValidationError("Missing 'publicId' in event data")
    deleted = await asyncio.to_thread(delete_asset_from_r2, public_id, folder)
    logger.info(f"Deleted stored sizes of {public_id} ({deleted} delete calls succeeded)")


def build_queue(nc, publish, settings: IngestSettings) -> IngestQueue:
    pipeline = UploadPipeline(
        generator=VariantGenerator(
            Transcoder(timeout=settings.transcode_timeout_seconds),
            enable_gif_to_video=settings.enable_gif_to_video,
        ),
        catalog=NatsCatalogStore(nc),
        notifier=Notifier(publish),
    )
    return IngestQueue(pipeline.run, concurrency=settings.concurrency)


@asynccontextmanager
async def lifespan(nc, publish):
    settings = IngestSettings.from_env()
    logger.info(f"Starting media-ingest with {settings}")

    queue = build_queue(nc, publish, settings)
    sweeper = StagingSweeper(
        max_age_hours=settings.staging_max_age_hours,
        interval_hours=settings.sweep_interval_hours,
    )
    sessions = UploadSessions(settings)
    sweeper.start()
    try:
        yield ConsumerApp(
            handlers={
                ASSET_DELETED_SUBJECT: handle_asset_deleted,
            },
            responders={
                FINALIZED_SUBJECT: partial(handle_finalize, queue=queue),
                UPLOAD_URL_SUBJECT: sessions.request_upload_url,
                UPLOAD_DISCARD_SUBJECT: sessions.discard,
            },
        )
    finally:
        await sweeper.stop()
        await queue.shutdown()
        await wait_background()


if __name__ == "__main__":
    run_consumer(lifespan, job_name="media-ingest", subject_filter=ASSET_DELETED_SUBJECT)
