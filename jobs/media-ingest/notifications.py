"""User notifications and cache invalidation, both fire-and-forget."""

import logging

from background import spawn_background

logger = logging.getLogger(__name__)

UPLOAD_COMPLETED = "upload_completed"
UPLOAD_FAILED = "upload_failed"

NOTIFICATION_SUBJECT = "notification-create"
CACHE_SUBJECT = "cache-invalidate"
IMAGES_CACHE_PREFIX = "/api/images"


class Notifier:
    """Publishes notification and cache events through the job's publish()."""

    def __init__(self, publish):
        self.publish = publish

    async def create(self, recipient: str, type: str, metadata: dict, image: str | None = None):
        payload = {"recipient": recipient, "type": type, "metadata": metadata}
        if image:
            payload["image"] = image
        await self.publish(NOTIFICATION_SUBJECT, payload)

    def notify(self, recipient: str, type: str, metadata: dict, image: str | None = None):
        """Send without waiting; failures are logged, never raised."""
        return spawn_background(
            self.create(recipient, type, metadata, image=image),
            f"notify {type} to {recipient}",
        )

    def invalidate_cache(self, prefix: str = IMAGES_CACHE_PREFIX):
        return spawn_background(
            self.publish(CACHE_SUBJECT, {"prefix": prefix}),
            f"cache invalidate {prefix}",
        )
