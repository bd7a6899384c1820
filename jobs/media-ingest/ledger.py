"""Per-job record of storage writes, used for rollback."""

import asyncio
import logging

from ingest_shared.r2 import delete_quietly, upload_to_r2

logger = logging.getLogger(__name__)


class StorageLedger:
    """Uploads through R2 and remembers every key that was written.

    A key is recorded only after its upload succeeded, so rollback() deletes
    exactly what this job put into storage. Rollback is best-effort and
    idempotent: deleting an already deleted key is a no-op in R2.
    """

    def __init__(self, job_label: str = ""):
        self.job_label = job_label
        self._keys: list[str] = []

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._keys)

    async def put(self, body: bytes, key: str, content_type: str) -> str:
        url = await asyncio.to_thread(upload_to_r2, key, body, content_type)
        self._keys.append(key)
        return url

    async def rollback(self) -> int:
        """Delete every recorded key. Never raises; returns successful deletes."""
        if not self._keys:
            return 0
        logger.warning(f"Rolling back {len(self._keys)} object(s) for {self.job_label}")
        results = await asyncio.gather(
            *(asyncio.to_thread(delete_quietly, key) for key in self._keys)
        )
        deleted = sum(1 for ok in results if ok)
        if deleted < len(self._keys):
            logger.error(
                f"Rollback for {self.job_label} left {len(self._keys) - deleted} object(s) behind"
            )
        return deleted
