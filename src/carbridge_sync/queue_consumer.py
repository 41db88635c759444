from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractQueue

from carbridge_sync.delivery import AmqpMessage, DeliveryHandle

LOGGER = logging.getLogger(__name__)

DeliveryHandler = Callable[[bytes, DeliveryHandle], Awaitable[None]]


async def declare_topology(
    channel: AbstractChannel,
    *,
    exchange_name: str,
    queue_name: str,
    routing_keys: Sequence[str],
    prefetch_count: int,
) -> AbstractQueue:
    """Declare the topic exchange, durable queue and bindings; cap unacked deliveries."""
    if prefetch_count < 1:
        raise ValueError("prefetch_count must be >= 1")

    await channel.set_qos(prefetch_count=prefetch_count)
    exchange = await channel.declare_exchange(exchange_name, ExchangeType.TOPIC, durable=True)
    queue = await channel.declare_queue(queue_name, durable=True)
    for routing_key in routing_keys:
        await queue.bind(exchange, routing_key=routing_key)

    LOGGER.info(
        "amqp_topology_ready",
        extra={
            "exchange": exchange_name,
            "queue": queue_name,
            "routing_keys": list(routing_keys),
            "prefetch_count": prefetch_count,
        },
    )
    return queue


class QueueConsumer:
    """Delivers one message at a time to a handler and guarantees a single disposition each."""

    def __init__(self, *, queue: AbstractQueue) -> None:
        self._queue = queue

    async def subscribe(self, handler: DeliveryHandler) -> None:
        LOGGER.info("queue_consumer_started", extra={"queue": self._queue.name})
        async with self._queue.iterator() as messages:
            async for message in messages:
                await self._dispatch(message, handler)

    async def acknowledge(self, handle: DeliveryHandle) -> None:
        await handle.acknowledge()

    async def reject_requeue(self, handle: DeliveryHandle) -> None:
        await handle.reject_requeue()

    async def reject_discard(self, handle: DeliveryHandle) -> None:
        await handle.reject_discard()

    async def _dispatch(self, message: AmqpMessage, handler: DeliveryHandler) -> None:
        handle = DeliveryHandle(message)
        try:
            await handler(message.body, handle)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception(
                "delivery_handler_failed",
                extra={"delivery_tag": handle.delivery_tag, "settled": handle.settled},
            )

        if not handle.settled:
            LOGGER.error("delivery_left_unsettled", extra={"delivery_tag": handle.delivery_tag})
            await handle.reject_requeue()
