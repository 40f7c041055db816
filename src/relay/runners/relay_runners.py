"""Runner functions for the relay's long-running processes."""

import asyncio
import logging
import random

from config.config import RelayConfig
from relay.runners.common import cancel_task, execute_worker_with_shutdown

logger = logging.getLogger(__name__)


async def run_ingestion_pipeline(
    config: RelayConfig,
    shutdown_event: asyncio.Event,
    instance_id: int | None = None,
) -> bool:
    """Consumes the durable queue and persists every change event.

    Extra instances share the queue; the broker distributes deliveries
    between them. Each instance gets its own health port offset.
    """
    from relay.ingestion.pipeline import IngestionPipeline

    health_port = config.health.port
    if instance_id and health_port:
        health_port += int(instance_id)

    pipeline = IngestionPipeline(
        config,
        instance_id=instance_id,
        health_port=health_port,
    )
    return await execute_worker_with_shutdown(
        pipeline,
        stage_name="consumer",
        shutdown_event=shutdown_event,
        instance_id=instance_id,
    )


async def run_traffic_generator(
    config: RelayConfig,
    shutdown_event: asyncio.Event,
    seed: int | None = None,
) -> int:
    """Publishes synthetic change events; returns how many were published.

    A shutdown signal while waiting for the broker closes it, which ends
    the wait.
    """
    from core.errors.exceptions import ConnectionError
    from core.logging.context import set_log_context
    from relay.common.broker import BrokerClient
    from relay.simulation.traffic import TrafficGenerator

    set_log_context(stage="traffic")
    broker = BrokerClient(config.broker, name="producer")
    generator = TrafficGenerator(broker, config.traffic, rng=random.Random(seed))

    async def close_on_shutdown():
        await shutdown_event.wait()
        await generator.stop()

    watcher_task = asyncio.create_task(close_on_shutdown())
    try:
        await generator.start()
        return await generator.run(shutdown_event)
    except ConnectionError:
        if shutdown_event.is_set():
            logger.info("Shutdown before broker became ready, nothing published")
            return generator.published
        raise
    finally:
        await cancel_task(watcher_task)
        await generator.stop()


async def run_change_tailer(
    config: RelayConfig,
    shutdown_event: asyncio.Event,
) -> None:
    """Prints newly ingested change events until shutdown."""
    from core.logging.context import set_log_context
    from relay.common.store import StoreClient
    from relay.tools.tailer.tailer import ChangeTailer

    set_log_context(stage="tailer")
    tailer = ChangeTailer(
        StoreClient(config.store, name="tailer-store"),
        poll_interval=config.tailer.poll_interval_seconds,
        settle_seconds=config.tailer.settle_seconds,
    )
    await execute_worker_with_shutdown(
        tailer,
        stage_name="tailer",
        shutdown_event=shutdown_event,
    )
