"""Run a start()/stop() worker until the process is asked to shut down.

Every long-running relay process (consumer instances, tailer) goes through
execute_worker_with_shutdown so they share log context, shutdown ordering
and the health-server error mode.
"""

import asyncio
import logging

from core.logging.context import set_log_context
from relay.common.health import HealthCheckServer

logger = logging.getLogger(__name__)


async def cancel_task(task: asyncio.Task) -> None:
    """Cancel a helper task and wait for it; a closing loop may raise RuntimeError."""
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, RuntimeError):
        pass


async def _hold_in_error_mode(
    health_server: HealthCheckServer,
    stage_name: str,
    error_msg: str,
    shutdown_event: asyncio.Event,
) -> None:
    """
    Park a worker whose start() failed.

    /health/live keeps answering and /health/ready reports `error_msg`
    until the shutdown signal arrives, so the failure stays visible from
    outside the container instead of ending in a restart loop.
    """
    health_server.set_error(error_msg)
    logger.warning(
        f"{stage_name} failed to start, holding health endpoint in error mode",
        extra={"stage": stage_name, "health_port": health_server.actual_port, "error": error_msg},
    )
    await shutdown_event.wait()
    logger.info(f"Shutdown signal received in error mode for {stage_name}")


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
    instance_id: int | None = None,
) -> bool:
    """
    Start a worker and stop it once `shutdown_event` is set.

    start() may block while the broker or store is unreachable. A shutdown
    during that wait calls stop(), which closes the connections and makes
    start() return or raise; either way the worker is stopped once.

    A start() failure outside shutdown holds the worker in error mode when
    it has a health_server, and is re-raised otherwise.

    Args:
        worker_instance: Object with async start() and stop()
        stage_name: Log context stage (consumer, tailer)
        shutdown_event: Set by the signal handlers
        instance_id: Index of this worker among --count instances

    Returns:
        False if start() failed or stop() reported an unclean close
    """
    context = {"stage": stage_name}
    label = stage_name
    if instance_id is not None:
        context.update(instance_id=instance_id, worker_id=f"{stage_name}-{instance_id}")
        label = f"{stage_name} (instance {instance_id})"
    set_log_context(**context)
    logger.info("Starting %s...", label)

    stop_result: bool | None = None
    start_failed = False

    async def stop_once() -> None:
        nonlocal stop_result
        if stop_result is None:
            stop_result = (await worker_instance.stop()) is not False

    async def stop_on_shutdown() -> None:
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {label}...")
        await stop_once()

    watcher = asyncio.create_task(stop_on_shutdown())
    try:
        await worker_instance.start()
        await watcher
    except Exception as e:
        if shutdown_event.is_set():
            # stop() during a blocked start(); let the watcher finish it
            logger.debug(f"{label} start interrupted by shutdown: {e}")
            await watcher
        elif hasattr(worker_instance, "health_server"):
            start_failed = True
            logger.error(f"Fatal error in {stage_name}: {e}", exc_info=True)
            await cancel_task(watcher)
            await _hold_in_error_mode(
                worker_instance.health_server, stage_name, f"Fatal error: {e}", shutdown_event
            )
        else:
            raise
    finally:
        await cancel_task(watcher)
        await stop_once()

    return bool(stop_result) and not start_failed
