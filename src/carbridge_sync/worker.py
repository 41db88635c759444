from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

from carbridge_sync.delivery import DeliveryHandle
from carbridge_sync.models import (
    Disposition,
    MalformedEventError,
    build_search_document,
    parse_change_event,
)
from carbridge_sync.record_store import RecordStoreError
from carbridge_sync.search_index import DeleteOutcome, SearchIndexError

LOGGER = logging.getLogger(__name__)


class RecordLookup(Protocol):
    async def find_by_identifier(self, identifier: str) -> dict[str, Any] | None:
        ...


class DocumentIndex(Protocol):
    async def delete_by_id(self, document_id: str) -> DeleteOutcome:
        ...

    async def create_with_id(self, document_id: str, document: dict[str, Any]) -> None:
        ...


class SyncOutcome(str, Enum):
    RECORD_MISSING = "record_missing"
    INDEXED = "indexed"


class SyncWorker:
    """Reproduces one index entry per change event and decides how the event is settled.

    Replacement is delete-then-create rather than a partial update so the
    indexed document always carries exactly the record's current field set.
    Redelivering the same event therefore converges on the same index state.
    """

    def __init__(self, *, store: RecordLookup, index: DocumentIndex) -> None:
        self._store = store
        self._index = index

    async def __call__(self, payload: bytes, handle: DeliveryHandle) -> None:
        disposition = await self.process(payload)
        await handle.settle(disposition)

    async def process(self, payload: bytes) -> Disposition:
        try:
            event = parse_change_event(payload)
        except MalformedEventError as exc:
            LOGGER.error(
                "event_malformed",
                extra={"payload_bytes": len(payload), "error": str(exc)},
            )
            return Disposition.DISCARD

        try:
            outcome = await self.sync(event.id)
        except (RecordStoreError, SearchIndexError) as exc:
            LOGGER.warning(
                "sync_failed_retryable",
                extra={"fzg_id": event.id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return Disposition.REQUEUE
        except Exception:
            LOGGER.exception("sync_failed_unexpected", extra={"fzg_id": event.id})
            return Disposition.REQUEUE

        LOGGER.info("sync_completed", extra={"fzg_id": event.id, "outcome": outcome.value})
        return Disposition.ACK

    async def sync(self, identifier: str) -> SyncOutcome:
        record = await self._store.find_by_identifier(identifier)
        if record is None:
            LOGGER.info("record_not_found", extra={"fzg_id": identifier})
            return SyncOutcome.RECORD_MISSING

        document = build_search_document(record)

        deleted = await self._index.delete_by_id(identifier)
        if deleted is DeleteOutcome.NOT_FOUND:
            LOGGER.debug("index_delete_not_found", extra={"fzg_id": identifier})

        await self._index.create_with_id(identifier, document)
        return SyncOutcome.INDEXED
