"""
Synthetic traffic generator.

Publishes batches of generated change events to the relay's exchange, so
the ingestion pipeline can be exercised without a MySQL + Maxwell stack.
"""

import asyncio
import json
import logging
import random
from typing import Any

from config.config import TrafficSettings
from core.errors.exceptions import PipelineError, ShutdownError
from core.utils.json_serializers import json_serializer
from relay.common.broker import BrokerClient
from relay.common.metrics import record_event_published
from relay.simulation.generators import apply_change_event, generate_change_event

logger = logging.getLogger(__name__)


class TrafficGenerator:
    """
    Generates and publishes change events in concurrent batches.

    Usage:
        generator = TrafficGenerator(broker, config.traffic, rng=random.Random(42))
        await generator.start()
        published = await generator.run(shutdown_event)
        await generator.stop()
    """

    def __init__(
        self,
        broker: BrokerClient,
        settings: TrafficSettings,
        rng: random.Random | None = None,
        publish_timeout: float = 30.0,
    ):
        self.broker = broker
        self.settings = settings
        self.rng = rng or random.Random()
        self.publish_timeout = publish_timeout

        self._rows: dict[int, dict[str, Any]] = {}
        self._next_id = 1
        self._published = 0
        self._failed = 0

    @property
    def published(self) -> int:
        return self._published

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def rows(self) -> dict[int, dict[str, Any]]:
        return self._rows

    async def start(self) -> None:
        """Connect to the broker; blocks until ready or stopped."""
        await self.broker.connect()

    async def stop(self) -> None:
        try:
            await self.broker.close()
        except ShutdownError as e:
            logger.error(f"Error closing broker: {e}")

    def next_event(self) -> dict[str, Any]:
        """Generate the next event and fold it into the known table state."""
        event = generate_change_event(
            self.rng,
            rows=self._rows,
            next_id=self._next_id,
            database=self.settings.database,
            table=self.settings.table,
        )
        if event["type"] == "insert":
            self._next_id += 1
        apply_change_event(self._rows, event)
        return event

    async def publish_event(self, event: dict[str, Any]) -> bool:
        """Publish one event. Failures are logged and reported as False."""
        body = json.dumps(event, default=json_serializer).encode("utf-8")
        try:
            await self.broker.publish(body, ready_timeout=self.publish_timeout)
        except PipelineError as e:
            self._failed += 1
            logger.error(
                f"Error publishing {event['type']} event: {e}",
                extra={"event_type": event["type"], "error_type": type(e).__name__},
            )
            return False

        self._published += 1
        record_event_published(self.broker.settings.exchange, event["type"])
        data = event["data"]
        logger.info(
            f"Published {event['type']} for user {data['id']}: "
            f"{data['name']}, {data['email']}, {data['status']}",
            extra={
                "event_type": event["type"],
                "database": event["database"],
                "table": event["table"],
            },
        )
        return True

    async def run_batch(self, size: int) -> int:
        """Publish `size` events concurrently; returns how many succeeded."""
        events = [self.next_event() for _ in range(size)]
        results = await asyncio.gather(*(self.publish_event(event) for event in events))
        return sum(1 for ok in results if ok)

    async def run(
        self,
        shutdown_event: asyncio.Event | None = None,
        operations: int | None = None,
        interval_seconds: float | None = None,
        concurrency: int | None = None,
    ) -> int:
        """
        Publish `operations` events in batches of `concurrency`, sleeping
        `interval_seconds` between batches. Stops early on shutdown.

        Returns:
            Number of events published
        """
        operations = self.settings.operations if operations is None else operations
        interval = self.settings.interval_seconds if interval_seconds is None else interval_seconds
        concurrency = concurrency or self.settings.concurrency
        shutdown_event = shutdown_event or asyncio.Event()

        logger.info(
            f"Starting {operations} operations with concurrency level: {concurrency}",
            extra={"operations": operations, "batch_size": concurrency},
        )

        started = self._published
        batch_number = 0
        for offset in range(0, operations, concurrency):
            if shutdown_event.is_set():
                logger.info("Shutdown requested, stopping traffic generation")
                break

            batch_number += 1
            size = min(concurrency, operations - offset)
            logger.info(f"Running batch {batch_number} with {size} operations in parallel")
            succeeded = await self.run_batch(size)
            logger.info(f"Completed batch {batch_number}: {succeeded}/{size} published")

            if offset + size < operations and interval > 0:
                logger.info(
                    f"Waiting {interval} seconds before next batch...",
                    extra={"delay_seconds": interval},
                )
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass

        total = self._published - started
        logger.info(
            f"Traffic generation finished: {total} published, {self._failed} failed",
            extra={"operations": operations},
        )
        return total


__all__ = ["TrafficGenerator"]
