"""Broker delivery types."""

import hashlib
from dataclasses import dataclass, field
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from core.errors.exceptions import MessageAlreadyResolvedError

__all__ = [
    "DeliveredMessage",
    "from_incoming_message",
]

# Set by RabbitMQ on quorum-queue redeliveries (count of previous deliveries)
DELIVERY_COUNT_HEADER = "x-delivery-count"


@dataclass
class DeliveredMessage:
    """
    A delivered-but-unresolved broker message.

    Owned by the handler processing it. Exactly one of ack(), nack() or
    reject() may be called; a second resolution raises
    MessageAlreadyResolvedError.
    """

    body: bytes
    queue: str
    delivery_tag: int | None = None
    redelivered: bool = False
    message_id: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    raw: AbstractIncomingMessage | None = field(default=None, repr=False)
    resolution: str | None = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    @property
    def delivery_count(self) -> int | None:
        """1-based delivery count from the broker header, if present."""
        previous = self.headers.get(DELIVERY_COUNT_HEADER)
        if previous is None:
            return None
        try:
            return int(previous) + 1
        except (TypeError, ValueError):
            return None

    @property
    def fingerprint(self) -> str:
        """Stable identity across redeliveries: message id, else body digest."""
        if self.message_id:
            return f"id:{self.message_id}"
        return f"sha1:{hashlib.sha1(self.body).hexdigest()}"

    def _claim(self, resolution: str) -> None:
        if self.resolution is not None:
            raise MessageAlreadyResolvedError(
                f"Delivery already resolved as {self.resolution}, cannot {resolution}",
                context={"delivery_tag": self.delivery_tag, "queue": self.queue},
            )
        self.resolution = resolution

    async def ack(self) -> None:
        self._claim("ack")
        if self.raw is not None:
            await self.raw.ack()

    async def nack(self, requeue: bool = True) -> None:
        self._claim("nack_requeue" if requeue else "nack")
        if self.raw is not None:
            await self.raw.nack(requeue=requeue)

    async def reject(self) -> None:
        self._claim("reject")
        if self.raw is not None:
            await self.raw.reject(requeue=False)


def from_incoming_message(message: AbstractIncomingMessage, queue: str) -> DeliveredMessage:
    """Convert an aio-pika incoming message to a DeliveredMessage."""
    return DeliveredMessage(
        body=message.body,
        queue=queue,
        delivery_tag=message.delivery_tag,
        redelivered=bool(message.redelivered),
        message_id=message.message_id,
        headers=dict(message.headers or {}),
        raw=message,
    )
