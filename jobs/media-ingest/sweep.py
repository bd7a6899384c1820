"""Periodic cleanup of staging objects that were never finalized.

Covers uploads abandoned before finalize and jobs whose staging cleanup
never ran because the process died mid-pipeline.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from ingest_shared.r2 import delete_quietly, list_r2_objects
from settings import RAW_UPLOAD_FOLDER

logger = logging.getLogger(__name__)

HOUR = 60 * 60


class StagingSweeper:
    def __init__(self, prefix: str = f"{RAW_UPLOAD_FOLDER}/", max_age_hours: float = 24,
                 interval_hours: float = 6):
        self.prefix = prefix
        self.max_age = timedelta(hours=max_age_hours)
        self.interval_seconds = interval_hours * HOUR
        self._task: asyncio.Task | None = None

    async def sweep_once(self, now: datetime | None = None) -> int:
        """Delete staging objects older than max_age. Returns how many went."""
        now = now or datetime.now(timezone.utc)
        try:
            listings = await asyncio.to_thread(list_r2_objects, self.prefix)
        except Exception as e:
            logger.error(f"Listing {self.prefix} for cleanup failed: {e}")
            return 0

        stale = [item for item in listings if now - item.last_modified > self.max_age]
        if not stale:
            return 0

        results = await asyncio.gather(
            *(asyncio.to_thread(delete_quietly, item.key) for item in stale)
        )
        deleted = sum(1 for ok in results if ok)
        logger.info(
            f"Cleaned up {deleted} old staging file(s) "
            f"(older than {self.max_age.total_seconds() / HOUR:g} hours)"
        )
        return deleted

    async def _loop(self):
        while True:
            await self.sweep_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        """Sweep now, then every interval, until stop()."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="staging-sweep")
            logger.info(
                f"Staging cleanup scheduler started (every {self.interval_seconds / HOUR:g} hours)"
            )

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Staging cleanup scheduler stopped")
