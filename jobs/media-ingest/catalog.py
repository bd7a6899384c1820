"""Catalog store access.

The catalog (image records) lives in another service. This job only needs
create and find-by-id; there are no transactions, so the pipeline's own
rollback is the only consistency mechanism.
"""

import json
import logging

from ingest_shared.errors import TransientExternalError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class CatalogStore:
    """Minimal CRUD surface the ingest pipeline relies on."""

    async def create(self, record: dict) -> dict:
        """Persist a new record and return it with its server-assigned ``id``."""
        raise NotImplementedError

    async def find_by_id(self, record_id: str) -> dict | None:
        """Return the record or None if it does not exist."""
        raise NotImplementedError


class NatsCatalogStore(CatalogStore):
    """Catalog access over NATS request/reply.

    Replies are JSON: the record on success, {"error": "..."} on failure, and
    {"record": null} from the get subject when nothing matches.
    """

    def __init__(self, nc, subject_prefix: str = "catalog.images",
                 timeout: float = REQUEST_TIMEOUT):
        self.nc = nc
        self.subject_prefix = subject_prefix
        self.timeout = timeout

    async def _request(self, action: str, payload: dict) -> dict:
        subject = f"{self.subject_prefix}.{action}"
        try:
            msg = await self.nc.request(subject, json.dumps(payload).encode(), timeout=self.timeout)
        except Exception as e:
            raise TransientExternalError(f"Catalog request {subject} failed: {e}") from e

        reply = json.loads(msg.data.decode())
        if "error" in reply:
            raise TransientExternalError(f"Catalog {action} rejected: {reply['error']}")
        return reply

    async def create(self, record: dict) -> dict:
        created = await self._request("create", record)
        if not created.get("id"):
            raise TransientExternalError("Catalog create returned no id")
        logger.info(f"Catalog record created: {created['id']}")
        return created

    async def find_by_id(self, record_id: str) -> dict | None:
        reply = await self._request("get", {"id": record_id})
        return reply.get("record")
