from __future__ import annotations

import asyncio
import copy
from typing import Any

from carbridge_sync.delivery import DeliveryHandle
from carbridge_sync.models import Disposition
from carbridge_sync.queue_consumer import QueueConsumer
from carbridge_sync.record_store import RecordStoreError
from carbridge_sync.search_index import DeleteOutcome, SearchIndexError
from carbridge_sync.worker import SyncOutcome, SyncWorker
from test_queue_consumer import _StubQueue


class _FakeStore:
    def __init__(self, records: dict[str, dict[str, Any]] | None = None) -> None:
        self.records = records or {}
        self.failures: list[Exception] = []
        self.lookups: list[str] = []

    async def find_by_identifier(self, identifier: str) -> dict[str, Any] | None:
        self.lookups.append(identifier)
        if self.failures:
            raise self.failures.pop(0)
        record = self.records.get(identifier)
        return copy.deepcopy(record) if record is not None else None


class _FakeIndex:
    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self.documents = documents or {}
        self.delete_failures: list[Exception] = []
        self.create_failures: list[Exception] = []
        self.operations: list[tuple[str, str]] = []

    async def delete_by_id(self, document_id: str) -> DeleteOutcome:
        self.operations.append(("delete", document_id))
        if self.delete_failures:
            raise self.delete_failures.pop(0)
        if self.documents.pop(document_id, None) is None:
            return DeleteOutcome.NOT_FOUND
        return DeleteOutcome.DELETED

    async def create_with_id(self, document_id: str, document: dict[str, Any]) -> None:
        self.operations.append(("create", document_id))
        if self.create_failures:
            raise self.create_failures.pop(0)
        self.documents[document_id] = document


class _StubMessage:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.delivery_tag = 1
        self.calls: list[tuple[str, bool | None]] = []

    async def ack(self, multiple: bool = False) -> None:
        self.calls.append(("ack", None))

    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        self.calls.append(("nack", requeue))


def _red_car_store() -> _FakeStore:
    return _FakeStore({"X1": {"_id": "66b0c0ffee", "__v": 0, "fzg_id": "X1", "color": "red"}})


def test_existing_record_is_indexed_without_store_fields() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        worker = SyncWorker(store=_red_car_store(), index=index)

        assert await worker.process(b'{"id":"X1"}') is Disposition.ACK
        assert index.documents == {"X1": {"fzg_id": "X1", "color": "red"}}

    asyncio.run(scenario())


def test_record_with_non_utf8_binary_field_is_indexed() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        worker = SyncWorker(
            store=_FakeStore({"X1": {"fzg_id": "X1", "blob": b"\xff\xfe"}}),
            index=index,
        )

        assert await worker.process(b'{"id":"X1"}') is Disposition.ACK
        assert isinstance(index.documents["X1"]["blob"], str)

    asyncio.run(scenario())


def test_missing_record_is_acknowledged_without_touching_index() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        worker = SyncWorker(store=_FakeStore(), index=index)

        assert await worker.process(b'{"id":"X2"}') is Disposition.ACK
        assert index.operations == []
        assert index.documents == {}

    asyncio.run(scenario())


def test_malformed_events_are_discarded_without_lookup() -> None:
    async def scenario() -> None:
        store = _red_car_store()
        index = _FakeIndex()
        worker = SyncWorker(store=store, index=index)

        for body in (b"{}", b'{"id": ""}', b"{not json"):
            assert await worker.process(body) is Disposition.DISCARD

        assert store.lookups == []
        assert index.operations == []

    asyncio.run(scenario())


def test_malformed_event_settles_once_as_discard() -> None:
    async def scenario() -> None:
        malformed = _StubMessage(b"{}")
        valid = _StubMessage(b'{"id":"X1"}')
        index = _FakeIndex()
        consumer = QueueConsumer(queue=_StubQueue([malformed, valid]))
        worker = SyncWorker(store=_red_car_store(), index=index)

        await consumer.subscribe(worker)

        assert malformed.calls == [("nack", False)]
        assert valid.calls == [("ack", None)]
        assert list(index.documents) == ["X1"]

    asyncio.run(scenario())


def test_delete_not_found_still_creates_document() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        worker = SyncWorker(store=_red_car_store(), index=index)

        assert await worker.sync("X1") is SyncOutcome.INDEXED
        assert index.operations == [("delete", "X1"), ("create", "X1")]
        assert "X1" in index.documents

    asyncio.run(scenario())


def test_full_replace_drops_fields_removed_from_record() -> None:
    async def scenario() -> None:
        index = _FakeIndex({"X1": {"fzg_id": "X1", "color": "blue", "sunroof": True}})
        worker = SyncWorker(store=_red_car_store(), index=index)

        assert await worker.process(b'{"id":"X1"}') is Disposition.ACK
        assert index.documents["X1"] == {"fzg_id": "X1", "color": "red"}

    asyncio.run(scenario())


def test_reprocessing_same_event_converges_to_same_document() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        worker = SyncWorker(store=_red_car_store(), index=index)

        await worker.process(b'{"id":"X1"}')
        first = copy.deepcopy(index.documents)
        await worker.process(b'{"id":"X1"}')

        assert index.documents == first

    asyncio.run(scenario())


def test_store_failure_requeues_without_touching_index() -> None:
    async def scenario() -> None:
        store = _red_car_store()
        store.failures.append(RecordStoreError("store unavailable"))
        index = _FakeIndex()
        worker = SyncWorker(store=store, index=index)

        assert await worker.process(b'{"id":"X1"}') is Disposition.REQUEUE
        assert index.operations == []

    asyncio.run(scenario())


def test_delete_failure_abandons_create_and_requeues() -> None:
    async def scenario() -> None:
        index = _FakeIndex({"X1": {"fzg_id": "X1", "color": "blue"}})
        index.delete_failures.append(SearchIndexError("delete failed", status_code=500))
        worker = SyncWorker(store=_red_car_store(), index=index)

        assert await worker.process(b'{"id":"X1"}') is Disposition.REQUEUE
        assert index.operations == [("delete", "X1")]

    asyncio.run(scenario())


def test_create_failure_requeues_and_retry_converges() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        index.create_failures.extend(
            [
                SearchIndexError("network error"),
                SearchIndexError("network error"),
                SearchIndexError("network error"),
            ]
        )
        worker = SyncWorker(store=_red_car_store(), index=index)

        for _ in range(3):
            assert await worker.process(b'{"id":"X1"}') is Disposition.REQUEUE
        assert index.documents == {}

        assert await worker.process(b'{"id":"X1"}') is Disposition.ACK
        assert index.documents == {"X1": {"fzg_id": "X1", "color": "red"}}

    asyncio.run(scenario())


def test_unexpected_exception_defaults_to_requeue() -> None:
    async def scenario() -> None:
        store = _red_car_store()
        store.failures.append(KeyError("surprise"))
        worker = SyncWorker(store=store, index=_FakeIndex())

        assert await worker.process(b'{"id":"X1"}') is Disposition.REQUEUE

    asyncio.run(scenario())


def test_worker_settles_handle_with_decided_disposition() -> None:
    async def scenario() -> None:
        index = _FakeIndex()
        index.create_failures.append(SearchIndexError("network error"))
        worker = SyncWorker(store=_red_car_store(), index=index)

        failed = _StubMessage(b'{"id":"X1"}')
        await worker(failed.body, DeliveryHandle(failed))
        assert failed.calls == [("nack", True)]

        redelivered = _StubMessage(b'{"id":"X1"}')
        await worker(redelivered.body, DeliveryHandle(redelivered))
        assert redelivered.calls == [("ack", None)]
        assert index.documents == {"X1": {"fzg_id": "X1", "color": "red"}}

    asyncio.run(scenario())
