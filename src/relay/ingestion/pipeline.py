"""
Ingestion pipeline: broker queue -> change event -> store document.

Processes one delivery at a time (prefetch 1). A delivery is acknowledged
only after its document is durably inserted; anything that goes wrong
before that requeues it, so every event is persisted at least once.

Flow per delivery:
    parse body -> stamp received_at -> insert (bounded by deadline) -> ack
    parse/persist failure -> requeue, or dead-letter once max_deliveries is hit
"""

import asyncio
import logging
import time
from enum import Enum

from config.config import RelayConfig
from core.errors.exceptions import (
    BrokerConnectionError,
    MessageAlreadyResolvedError,
    ParseError,
    PersistError,
    PipelineError,
    ShutdownError,
    wrap_exception,
)
from core.logging.message_context import MessageLogContext
from core.logging.periodic_logger import PeriodicStatsLogger
from core.resilience.reconnect import ConnectionState
from core.utils.worker_id import generate_worker_id
from relay.common.broker import BrokerClient
from relay.common.dlq import DeadLetter, DeadLetterPublisher, RedeliveryPolicy
from relay.common.health import HealthCheckServer
from relay.common.metrics import (
    record_message_resolved,
    record_processing_error,
    track_connection_state,
)
from relay.common.store import StoreClient
from relay.common.types import DeliveredMessage
from relay.schemas.events import ChangeEvent, parse_change_event

logger = logging.getLogger(__name__)


class Resolution(Enum):
    ACKED = "acked"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"


class IngestionPipeline:
    """
    Consumes change events from RabbitMQ and persists them to MongoDB.

    Usage:
        pipeline = IngestionPipeline(config)
        await pipeline.start()
        ...
        await pipeline.stop()
    """

    WORKER_NAME = "consumer"

    def __init__(
        self,
        config: RelayConfig,
        broker: BrokerClient | None = None,
        store: StoreClient | None = None,
        instance_id: int | None = None,
        health_port: int | None = None,
    ):
        self.config = config
        self.instance_id = instance_id

        if instance_id is not None:
            self.worker_id = f"{self.WORKER_NAME}-{instance_id}"
        else:
            self.worker_id = generate_worker_id(f"relay-{self.WORKER_NAME}")

        self.broker = broker or BrokerClient(
            config.broker, dead_letter_queue=config.dead_letter_queue
        )
        self.store = store or StoreClient(config.store)
        self.queue = config.broker.queue
        self.processing_timeout = config.processing.processing_timeout_seconds

        self.redelivery = RedeliveryPolicy(config.processing.max_deliveries)
        self.dead_letters: DeadLetterPublisher | None = None
        if config.dead_letter_queue:
            self.dead_letters = DeadLetterPublisher(
                self.broker, config.dead_letter_queue, worker_id=self.worker_id
            )

        self.health_server = HealthCheckServer(
            port=config.health.port if health_port is None else health_port,
            worker_name=f"relay-{self.worker_id}",
            enabled=config.health.enabled,
            heartbeat_timeout_seconds=3 * config.processing.stats_interval_seconds,
        )

        for resource in (self.broker, self.store):
            resource.add_state_listener(track_connection_state)
            resource.add_state_listener(self._on_connection_state)

        self._running = False
        self._stats_logger: PeriodicStatsLogger | None = None

        self._records_processed = 0
        self._records_succeeded = 0
        self._records_requeued = 0
        self._records_dead_lettered = 0

        logger.info(
            "Initialized ingestion pipeline",
            extra={
                "worker_id": self.worker_id,
                "queue": self.queue,
                "database": config.store.database,
                "collection": config.store.collection,
                "processing_timeout_seconds": self.processing_timeout,
                "max_deliveries": config.processing.max_deliveries,
                "dlq_queue": config.dead_letter_queue,
            },
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def _on_connection_state(self, name: str, state: ConnectionState) -> None:
        connected = state == ConnectionState.READY
        if name == self.broker.name:
            self.health_server.set_ready(broker_connected=connected)
        elif name == self.store.name:
            self.health_server.set_ready(store_connected=connected)

    async def start(self) -> None:
        """
        Connect to the store and the broker, then start consuming.

        Blocks until both connections are ready. Connection failures are
        retried by the clients every reconnect_delay_seconds until stop().
        """
        logger.info(
            "Starting ingestion pipeline",
            extra={"worker_id": self.worker_id, "queue": self.queue},
        )

        # Start health server first for immediate liveness probe response
        await self.health_server.start()

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.processing.stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage=self.WORKER_NAME,
            worker_id=self.worker_id,
        )
        self._stats_logger.start()
        self._running = True

        await self.store.connect()
        await self.broker.connect()
        await self.broker.subscribe(self.handle)

        logger.info(
            "Ingestion pipeline started, waiting for messages",
            extra={"worker_id": self.worker_id, "queue": self.queue},
        )

    async def stop(self) -> bool:
        """
        Stop consuming and close both connections.

        An in-flight delivery that has not been acked is redelivered by the
        broker once the channel closes.

        Returns:
            True if every resource closed cleanly
        """
        if not self._running:
            logger.debug("Ingestion pipeline not running")
            return True

        logger.info("Stopping ingestion pipeline", extra={"worker_id": self.worker_id})
        self._running = False
        clean = True

        if self._stats_logger:
            await self._stats_logger.stop()
            self._stats_logger = None

        await self.broker.unsubscribe()

        for resource in (self.broker, self.store):
            try:
                await resource.close()
            except ShutdownError as e:
                logger.error(
                    f"Error closing {resource.name}: {e}",
                    extra={"component": resource.name},
                )
                clean = False

        await self.health_server.stop()

        logger.info(
            "Ingestion pipeline stopped successfully" if clean else "Ingestion pipeline stopped with errors",
            extra={"worker_id": self.worker_id, **self._get_cycle_stats()},
        )
        return clean

    # -------------------------------------------------------------------------
    # Delivery handling
    # -------------------------------------------------------------------------

    async def handle(self, message: DeliveredMessage) -> Resolution:
        """
        Process one delivery and resolve it exactly once.

        Returns:
            How the delivery was resolved
        """
        with MessageLogContext(
            queue=message.queue,
            delivery_tag=message.delivery_tag,
            redelivered=message.redelivered,
            message_id=message.message_id,
        ):
            start_time = time.perf_counter()
            resolution = Resolution.REQUEUED
            self._records_processed += 1
            self.health_server.record_heartbeat()

            try:
                event = parse_change_event(message.body)
                inserted_id = await self._persist(event)
            except (ParseError, PersistError) as e:
                resolution = await self._handle_failure(message, e)
            except Exception as e:
                logger.error("Unexpected error processing message", exc_info=True)
                resolution = await self._handle_failure(
                    message, wrap_exception(e, default_class=PersistError)
                )
            else:
                resolution = await self._acknowledge(message, event, inserted_id)
            finally:
                record_message_resolved(
                    message.queue, resolution.value, time.perf_counter() - start_time
                )

            return resolution

    async def _persist(self, event: ChangeEvent):
        try:
            return await asyncio.wait_for(
                self.store.insert(event.to_document()),
                timeout=self.processing_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PersistError(
                f"Insert did not complete within {self.processing_timeout}s",
                cause=e,
                context={"error_type": "deadline_exceeded"},
            ) from e

    async def _acknowledge(
        self, message: DeliveredMessage, event: ChangeEvent, inserted_id
    ) -> Resolution:
        try:
            await self.broker.ack(message)
        except BrokerConnectionError as e:
            # Already persisted; the redelivery will be stored again
            logger.warning(
                f"Failed to ack persisted message, broker will redeliver: {e}",
                extra={"inserted_id": str(inserted_id)},
            )

        self.redelivery.record_success(message)
        self._records_succeeded += 1

        logger.info(
            f"Processed {event.type or 'unknown'} event for {event.source}",
            extra={
                "database": event.source_database,
                "table": event.source_table,
                "event_type": str(event.type),
                "inserted_id": str(inserted_id),
            },
        )
        return Resolution.ACKED

    async def _handle_failure(
        self, message: DeliveredMessage, error: PipelineError
    ) -> Resolution:
        error_type = type(error).__name__
        record_processing_error(message.queue, error_type)

        decision = self.redelivery.decide(message, error)
        if isinstance(decision, DeadLetter) and self.dead_letters is not None:
            if await self._dead_letter(message, error, decision.delivery_count):
                return Resolution.DEAD_LETTERED

        if isinstance(error, ParseError):
            log_message = f"Failed to parse message, requeueing: {error}"
        else:
            log_message = f"Failed to persist message, requeueing: {error}"
        logger.warning(
            log_message,
            extra={
                "error_type": error_type,
                "error_category": error.category.value,
                "delivery_count": decision.delivery_count,
            },
        )

        try:
            await self.broker.nack(message, requeue=True)
        except BrokerConnectionError as e:
            logger.warning(f"Failed to requeue message, broker will redeliver: {e}")
        except MessageAlreadyResolvedError:
            logger.debug("Delivery already resolved, skipping requeue")

        self._records_requeued += 1
        return Resolution.REQUEUED

    async def _dead_letter(
        self, message: DeliveredMessage, error: PipelineError, delivery_count: int
    ) -> bool:
        """Publish to the dead-letter queue and reject. False means requeue instead."""
        try:
            await self.dead_letters.send(message, error, delivery_count)
        except Exception:
            return False

        try:
            await self.broker.reject(message)
        except BrokerConnectionError as e:
            logger.warning(
                f"Dead-lettered message could not be rejected, broker will redeliver: {e}"
            )
        except MessageAlreadyResolvedError:
            logger.debug("Delivery already resolved, skipping reject")

        self.redelivery.record_success(message)
        self._records_dead_lettered += 1
        return True

    def _get_cycle_stats(self) -> dict[str, int]:
        self.health_server.record_heartbeat()
        return {
            "records_processed": self._records_processed,
            "records_succeeded": self._records_succeeded,
            "records_requeued": self._records_requeued,
            "records_dead_lettered": self._records_dead_lettered,
        }


__all__ = ["IngestionPipeline", "Resolution"]
