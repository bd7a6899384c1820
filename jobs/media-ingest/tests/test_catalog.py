import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from background import spawn_background, wait_background
from catalog import CatalogStore, NatsCatalogStore
from ingest_shared.errors import TransientExternalError
from notifications import CACHE_SUBJECT, NOTIFICATION_SUBJECT, Notifier


def _reply(payload):
    msg = MagicMock()
    msg.data = json.dumps(payload).encode()
    return msg


class TestNatsCatalogStore:
    @pytest.mark.asyncio
    async def test_create_sends_record_and_returns_reply(self):
        nc = MagicMock()
        nc.request = AsyncMock(return_value=_reply({"id": "64b7f0c2a1b2c3d4e5f60718", "publicId": "p"}))
        store = NatsCatalogStore(nc)

        created = await store.create({"publicId": "p"})

        assert created["id"] == "64b7f0c2a1b2c3d4e5f60718"
        subject, body = nc.request.call_args[0]
        assert subject == "catalog.images.create"
        assert json.loads(body) == {"publicId": "p"}
        assert nc.request.call_args[1]["timeout"] == 10

    @pytest.mark.asyncio
    async def test_create_without_id_is_an_error(self):
        nc = MagicMock()
        nc.request = AsyncMock(return_value=_reply({"publicId": "p"}))
        with pytest.raises(TransientExternalError, match="no id"):
            await NatsCatalogStore(nc).create({"publicId": "p"})

    @pytest.mark.asyncio
    async def test_error_reply_raises(self):
        nc = MagicMock()
        nc.request = AsyncMock(return_value=_reply({"error": "duplicate publicId"}))
        with pytest.raises(TransientExternalError, match="duplicate publicId"):
            await NatsCatalogStore(nc).create({"publicId": "p"})

    @pytest.mark.asyncio
    async def test_request_failure_raises(self):
        nc = MagicMock()
        nc.request = AsyncMock(side_effect=TimeoutError())
        with pytest.raises(TransientExternalError, match="catalog.images.create"):
            await NatsCatalogStore(nc).create({"publicId": "p"})

    @pytest.mark.asyncio
    async def test_find_by_id(self):
        nc = MagicMock()
        nc.request = AsyncMock(side_effect=[_reply({"record": {"id": "a"}}), _reply({"record": None})])
        store = NatsCatalogStore(nc, subject_prefix="catalog.test")

        assert await store.find_by_id("a") == {"id": "a"}
        assert await store.find_by_id("b") is None
        assert nc.request.call_args[0][0] == "catalog.test.get"

    @pytest.mark.asyncio
    async def test_base_store_is_abstract(self):
        with pytest.raises(NotImplementedError):
            await CatalogStore().create({})


class TestNotifier:
    @pytest.mark.asyncio
    async def test_notify_publishes_in_background(self, publisher):
        notifier = Notifier(publisher)
        notifier.notify("user-1", "upload_completed", {"imageTitle": "t"}, image="img-1")
        await wait_background()
        assert publisher.on(NOTIFICATION_SUBJECT) == [{
            "recipient": "user-1",
            "type": "upload_completed",
            "metadata": {"imageTitle": "t"},
            "image": "img-1",
        }]

    @pytest.mark.asyncio
    async def test_notify_failure_is_swallowed(self, publisher):
        publisher.fail = True
        task = Notifier(publisher).notify("user-1", "upload_failed", {})
        await wait_background()
        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_invalidate_cache(self, publisher):
        Notifier(publisher).invalidate_cache("/api/images/1")
        await wait_background()
        assert publisher.on(CACHE_SUBJECT) == [{"prefix": "/api/images/1"}]

    @pytest.mark.asyncio
    async def test_background_task_failure_is_logged(self, caplog):
        async def boom():
            raise RuntimeError("nope")

        spawn_background(boom(), "boom task")
        await wait_background()
        assert "Background task boom task failed: nope" in caplog.text
