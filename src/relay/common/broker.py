"""
RabbitMQ client for the change-event relay.

Owns one connection and one channel. On every (re)connect it declares the
durable fanout exchange and the durable queue, binds them, applies the
prefetch limit and re-establishes the consumer if a handler is subscribed.

An unexpected close of the connection or channel discards both and
reconnects after the fixed delay. Unacknowledged deliveries on the lost
channel are redelivered by the broker; nothing is lost in the gap.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
)

from config.config import BrokerSettings
from core.errors.classifiers import BrokerErrorClassifier
from core.errors.exceptions import BrokerConnectionError, MessageAlreadyResolvedError
from core.resilience.reconnect import ReconnectingResource
from relay.common.types import DeliveredMessage, from_incoming_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[DeliveredMessage], Awaitable[Any]]


class BrokerClient(ReconnectingResource):
    """
    Durable consumer and publisher over a single AMQP channel.

    Usage:
        broker = BrokerClient(config.broker)
        await broker.connect()
        await broker.subscribe(pipeline.handle)
        ...
        await broker.close()
    """

    def __init__(
        self,
        settings: BrokerSettings,
        dead_letter_queue: str | None = None,
        name: str = "broker",
    ):
        super().__init__(name, reconnect_delay=settings.reconnect_delay_seconds)
        self.settings = settings
        self.dead_letter_queue = dead_letter_queue
        self._classifier = BrokerErrorClassifier()

        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._handler: MessageHandler | None = None

        logger.info(
            "Initialized broker client",
            extra={
                "broker_url": settings.url,
                "exchange": settings.exchange,
                "queue": settings.queue,
                "prefetch_count": settings.prefetch_count,
                "dlq_queue": dead_letter_queue,
            },
        )

    @property
    def channel(self) -> AbstractChannel | None:
        return self._channel

    @property
    def is_consuming(self) -> bool:
        return self._consumer_tag is not None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _open(self) -> None:
        settings = self.settings
        try:
            connection = await aio_pika.connect(
                settings.url, timeout=settings.connect_timeout_seconds
            )
            self._connection = connection
            connection.close_callbacks.add(self._on_connection_closed)

            channel = await connection.channel()
            self._channel = channel
            channel.close_callbacks.add(self._on_channel_closed)

            await channel.set_qos(prefetch_count=settings.prefetch_count)
            self._exchange = await channel.declare_exchange(
                settings.exchange, aio_pika.ExchangeType.FANOUT, durable=True
            )
            self._queue = await channel.declare_queue(settings.queue, durable=True)
            await self._queue.bind(self._exchange, routing_key=settings.routing_key)

            if self.dead_letter_queue:
                await channel.declare_queue(self.dead_letter_queue, durable=True)

            if self._handler is not None:
                await self._start_consuming()
        except Exception as e:
            raise self._classifier.classify_connection_error(
                e, context={"exchange": settings.exchange, "queue": settings.queue}
            ) from e

        logger.info(
            f"Connected to RabbitMQ, consuming from {settings.queue}"
            if self._handler is not None
            else "Connected to RabbitMQ",
            extra={"exchange": settings.exchange, "queue": settings.queue},
        )

    async def _discard(self) -> None:
        connection = self._connection
        self._connection = None
        self._channel = None
        self._exchange = None
        self._queue = None
        self._consumer_tag = None

        if connection is None or connection.is_closed:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Ignoring error while discarding broker connection: {e}")

    async def _shutdown(self) -> None:
        connection = self._connection
        queue = self._queue
        consumer_tag = self._consumer_tag

        self._connection = None
        self._channel = None
        self._exchange = None
        self._queue = None
        self._consumer_tag = None

        if connection is None or connection.is_closed:
            return
        if queue is not None and consumer_tag is not None:
            try:
                await queue.cancel(consumer_tag)
            except Exception as e:
                logger.debug(f"Consumer cancel failed during shutdown: {e}")
        await connection.close()

    def _on_connection_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        # Fires for our own close() too; only react for the live connection
        if sender is not self._connection:
            return
        self.mark_failed(exc or BrokerConnectionError("RabbitMQ connection closed"))

    def _on_channel_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if sender is not self._channel:
            return
        self.mark_failed(exc or BrokerConnectionError("RabbitMQ channel closed"))

    # -------------------------------------------------------------------------
    # Consuming
    # -------------------------------------------------------------------------

    async def subscribe(self, handler: MessageHandler) -> None:
        """
        Register the delivery handler and start consuming.

        The subscription survives reconnects: every new channel starts a
        consumer for the same handler in manual-ack mode.
        """
        self._handler = handler
        if self.is_ready and self._consumer_tag is None:
            try:
                await self._start_consuming()
            except Exception as e:
                self.mark_failed(e)
                raise self._classifier.classify_connection_error(e) from e
            logger.info(f"Consuming from {self.settings.queue}")

    async def unsubscribe(self) -> None:
        """Stop accepting deliveries. In-flight messages stay unacked."""
        self._handler = None
        queue, consumer_tag = self._queue, self._consumer_tag
        self._consumer_tag = None
        if queue is None or consumer_tag is None:
            return
        try:
            await queue.cancel(consumer_tag)
        except Exception as e:
            logger.warning(f"Failed to cancel consumer: {e}", extra={"queue": self.settings.queue})

    async def _start_consuming(self) -> None:
        self._consumer_tag = await self._queue.consume(self._on_message, no_ack=False)

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        handler = self._handler
        delivered = from_incoming_message(message, self.settings.queue)
        if handler is None:
            # Unsubscribed while the delivery was in flight
            await self.nack(delivered, requeue=True)
            return
        try:
            await handler(delivered)
        except Exception:
            logger.error("Unhandled error in delivery handler", exc_info=True)
            if not delivered.resolved:
                await self.nack(delivered, requeue=True)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def ack(self, message: DeliveredMessage) -> None:
        """
        Acknowledge a delivery.

        Raises:
            MessageAlreadyResolvedError: If the delivery was already resolved
            BrokerConnectionError: If the channel is gone (broker will redeliver)
        """
        await self._resolve(message, message.ack)

    async def nack(self, message: DeliveredMessage, requeue: bool = True) -> None:
        """Negatively acknowledge a delivery, requeueing it by default."""
        await self._resolve(message, lambda: message.nack(requeue=requeue))

    async def reject(self, message: DeliveredMessage) -> None:
        """Reject a delivery without requeue."""
        await self._resolve(message, message.reject)

    async def _resolve(self, message: DeliveredMessage, action: Callable[[], Awaitable[None]]) -> None:
        try:
            await action()
        except MessageAlreadyResolvedError:
            raise
        except Exception as e:
            self.mark_failed(e)
            raise BrokerConnectionError(
                f"Failed to resolve delivery: {e}",
                cause=e,
                context={"delivery_tag": message.delivery_tag, "queue": message.queue},
            ) from e

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self,
        body: bytes,
        routing_key: str | None = None,
        headers: dict[str, Any] | None = None,
        message_id: str | None = None,
        ready_timeout: float | None = None,
    ) -> None:
        """
        Publish a persistent JSON message to the exchange.

        Raises:
            BrokerConnectionError: If not ready within ready_timeout or the publish fails
        """
        await self._publish(
            lambda: self._exchange,
            body,
            self.settings.routing_key if routing_key is None else routing_key,
            headers,
            message_id,
            ready_timeout,
        )

    async def publish_to_queue(
        self,
        queue_name: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
        message_id: str | None = None,
        ready_timeout: float | None = None,
    ) -> None:
        """Publish a persistent message straight to a queue via the default exchange."""
        await self._publish(
            lambda: self._channel.default_exchange if self._channel else None,
            body,
            queue_name,
            headers,
            message_id,
            ready_timeout,
        )

    async def _publish(
        self,
        get_exchange: Callable[[], AbstractExchange | None],
        body: bytes,
        routing_key: str,
        headers: dict[str, Any] | None,
        message_id: str | None,
        ready_timeout: float | None,
    ) -> None:
        if not await self.wait_ready(ready_timeout):
            raise BrokerConnectionError(
                "Broker not ready for publish", context={"routing_key": routing_key}
            )

        exchange = get_exchange()
        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers=headers or {},
            message_id=message_id,
        )
        try:
            await exchange.publish(message, routing_key=routing_key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.mark_failed(e)
            raise self._classifier.classify_connection_error(
                e, context={"routing_key": routing_key}
            ) from e


__all__ = ["BrokerClient", "MessageHandler"]
