"""Fire-and-forget tasks whose failures are logged and discarded."""

import asyncio
import logging
from typing import Awaitable

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight.
_pending: set[asyncio.Task] = set()


async def _guarded(coro: Awaitable, label: str):
    try:
        await coro
    except Exception as e:
        logger.warning(f"Background task {label} failed: {e}")


def spawn_background(coro: Awaitable, label: str) -> asyncio.Task:
    task = asyncio.create_task(_guarded(coro, label))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def wait_background():
    """Wait for outstanding fire-and-forget tasks, used on shutdown and in tests."""
    if _pending:
        await asyncio.gather(*list(_pending))
