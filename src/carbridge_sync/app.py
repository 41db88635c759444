from __future__ import annotations

import asyncio
import logging

from carbridge_sync.context import SyncContext, open_sync_context
from carbridge_sync.queue_consumer import QueueConsumer, declare_topology
from carbridge_sync.record_store import RecordStore, record_store_watchdog
from carbridge_sync.search_index import SearchIndexClient
from carbridge_sync.settings import Settings
from carbridge_sync.worker import SyncWorker

LOGGER = logging.getLogger(__name__)


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def run() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    LOGGER.info(
        "service_start",
        extra={
            "amqp_exchange": settings.amqp_exchange,
            "amqp_queue": settings.amqp_queue,
            "mongo_collection": settings.mongo_collection,
            "elastic_index": settings.elastic_index,
        },
    )

    context = await open_sync_context(settings)
    try:
        await _run_pipeline(settings=settings, context=context)
    finally:
        await context.close()
        LOGGER.info("service_stopped")


async def _run_pipeline(*, settings: Settings, context: SyncContext) -> None:
    collection = context.mongo_client[settings.mongo_database][settings.mongo_collection]
    store = RecordStore(collection=collection, timeout_s=settings.store_timeout_s)
    await store.ensure_indexes()

    queue = await declare_topology(
        context.channel,
        exchange_name=settings.amqp_exchange,
        queue_name=settings.amqp_queue,
        routing_keys=settings.routing_keys,
        prefetch_count=settings.amqp_prefetch_count,
    )
    consumer = QueueConsumer(queue=queue)
    worker = SyncWorker(
        store=store,
        index=SearchIndexClient(client=context.http_client, index=settings.elastic_index),
    )

    stop_event = asyncio.Event()
    tasks = [
        asyncio.create_task(consumer.subscribe(worker), name="queue_consumer"),
        asyncio.create_task(
            record_store_watchdog(
                store,
                interval_s=settings.store_watchdog_interval_s,
                stop_event=stop_event,
            ),
            name="record_store_watchdog",
        ),
    ]

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            exc = task.exception()
            if exc is not None:
                raise exc

        raise RuntimeError("Sync tasks stopped unexpectedly")
    finally:
        stop_event.set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
