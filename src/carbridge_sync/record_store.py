from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from pymongo.errors import PyMongoError

from carbridge_sync.models import IDENTIFIER_FIELD

LOGGER = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when a record lookup fails for a transient reason."""


class RecordDatabase(Protocol):
    async def command(self, command: str) -> dict[str, Any]:
        ...


class RecordCollection(Protocol):
    @property
    def database(self) -> RecordDatabase:
        ...

    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        ...

    async def create_index(self, keys: str, **kwargs: Any) -> str:
        ...


class RecordStore:
    def __init__(self, *, collection: RecordCollection, timeout_s: float) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

        self._collection = collection
        self._timeout_s = timeout_s

    async def find_by_identifier(self, identifier: str) -> dict[str, Any] | None:
        try:
            return await asyncio.wait_for(
                self._collection.find_one({IDENTIFIER_FIELD: identifier}),
                timeout=self._timeout_s,
            )
        except TimeoutError as exc:
            raise RecordStoreError(
                f"Record lookup for {identifier!r} timed out after {self._timeout_s}s"
            ) from exc
        except PyMongoError as exc:
            raise RecordStoreError(f"Record lookup for {identifier!r} failed: {exc}") from exc

    async def ensure_indexes(self) -> None:
        name = await asyncio.wait_for(
            self._collection.create_index(IDENTIFIER_FIELD),
            timeout=self._timeout_s,
        )
        LOGGER.info("record_store_index_ready", extra={"index_name": name})

    async def ping(self) -> bool:
        try:
            await asyncio.wait_for(
                self._collection.database.command("ping"),
                timeout=self._timeout_s,
            )
        except (TimeoutError, PyMongoError):
            LOGGER.warning("record_store_ping_failed", exc_info=True)
            return False
        return True


async def record_store_watchdog(
    store: RecordStore,
    *,
    interval_s: float,
    stop_event: asyncio.Event,
) -> None:
    while not stop_event.is_set():
        await asyncio.sleep(interval_s)
        if not await store.ping():
            LOGGER.error("record_store_connection_lost")
            raise RuntimeError("record_store_connection_lost")
