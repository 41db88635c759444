from __future__ import annotations

from typing import Protocol

from carbridge_sync.models import Disposition


class DeliveryAlreadySettledError(RuntimeError):
    """Raised when a second terminal disposition is issued for one delivery."""


class AmqpMessage(Protocol):
    body: bytes
    delivery_tag: int | None

    async def ack(self, multiple: bool = False) -> None:
        ...

    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        ...


class DeliveryHandle:
    """Single-use reference to one in-flight message.

    The handle is marked settled before the broker call is made, so a failed
    ack/nack can never be followed by a second, conflicting disposition.
    """

    def __init__(self, message: AmqpMessage) -> None:
        self._message = message
        self._disposition: Disposition | None = None

    @property
    def delivery_tag(self) -> int | None:
        return self._message.delivery_tag

    @property
    def disposition(self) -> Disposition | None:
        return self._disposition

    @property
    def settled(self) -> bool:
        return self._disposition is not None

    async def acknowledge(self) -> None:
        self._claim(Disposition.ACK)
        await self._message.ack()

    async def reject_requeue(self) -> None:
        self._claim(Disposition.REQUEUE)
        await self._message.nack(requeue=True)

    async def reject_discard(self) -> None:
        self._claim(Disposition.DISCARD)
        await self._message.nack(requeue=False)

    async def settle(self, disposition: Disposition) -> None:
        if disposition is Disposition.ACK:
            await self.acknowledge()
        elif disposition is Disposition.REQUEUE:
            await self.reject_requeue()
        else:
            await self.reject_discard()

    def _claim(self, disposition: Disposition) -> None:
        if self._disposition is not None:
            raise DeliveryAlreadySettledError(
                f"Delivery {self.delivery_tag} already settled as {self._disposition.value}; "
                f"refusing {disposition.value}"
            )
        self._disposition = disposition
