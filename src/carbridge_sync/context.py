from __future__ import annotations

import logging

import aio_pika
import httpx
from aio_pika.abc import AbstractChannel, AbstractConnection
from pydantic import BaseModel, ConfigDict
from pymongo import AsyncMongoClient

from carbridge_sync.search_index import create_search_http_client
from carbridge_sync.settings import Settings

LOGGER = logging.getLogger(__name__)


class SyncContext(BaseModel):
    """Long-lived transport handles, opened once per process and passed to each component."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    amqp_connection: AbstractConnection
    channel: AbstractChannel
    mongo_client: AsyncMongoClient
    http_client: httpx.AsyncClient

    async def close(self) -> None:
        try:
            await self.amqp_connection.close()
        finally:
            try:
                await self.mongo_client.close()
            finally:
                await self.http_client.aclose()


async def open_sync_context(settings: Settings) -> SyncContext:
    """Connect to the store, the broker and the index; any failure here is fatal to the process."""
    mongo_client: AsyncMongoClient = AsyncMongoClient(
        settings.mongo_url,
        serverSelectionTimeoutMS=int(settings.store_timeout_s * 1000),
    )
    try:
        await mongo_client.admin.command("ping")
        LOGGER.info("record_store_connected", extra={"mongo_database": settings.mongo_database})

        amqp_connection = await aio_pika.connect(settings.amqp_url)
    except BaseException:
        await mongo_client.close()
        raise

    try:
        channel = await amqp_connection.channel()
    except BaseException:
        await amqp_connection.close()
        await mongo_client.close()
        raise
    LOGGER.info("amqp_connected")

    http_client = create_search_http_client(
        base_url=settings.elastic_base_url,
        timeout_s=settings.index_timeout_s,
    )
    return SyncContext(
        amqp_connection=amqp_connection,
        channel=channel,
        mongo_client=mongo_client,
        http_client=http_client,
    )
