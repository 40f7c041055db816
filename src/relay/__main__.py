"""Binlog relay consumer. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import load_config
from core.logging.setup import setup_logging
from core.utils.worker_id import generate_worker_id
from relay.common.signals import remove_shutdown_signal_handlers, setup_shutdown_signal_handlers
from relay.runners.relay_runners import run_ingestion_pipeline

# __main__.py is at src/relay/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

# Set by signal handlers; workers stop consuming and close their connections
_shutdown_event: asyncio.Event | None = None


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Relay Maxwell change events from RabbitMQ into MongoDB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run one consumer
    python -m relay

    # Run three consumers sharing the queue
    python -m relay --count 3

    # Log to stdout only (containers)
    python -m relay --log-to-stdout
        """,
    )

    parser.add_argument(
        "--count",
        "-c",
        type=int,
        default=1,
        help="Number of consumer instances to run concurrently (default: 1). "
        "Instances share the queue; each delivery goes to one of them.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server (default: 8000, 0 to disable)",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Port for the health endpoint (default: from config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    return parser.parse_args(argv)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno == 98:
            logger.info(
                "Port already in use, finding available port",
                extra={"preferred_port": preferred_port},
            )

            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("", 0))
                s.listen(1)
                available_port = s.getsockname()[1]

            start_http_server(available_port)
            return available_port
        raise


def handle_shutdown_signal() -> None:
    """First signal: graceful shutdown. Second signal: cancel everything."""
    shutdown_event = get_shutdown_event()
    if not shutdown_event.is_set():
        logger.info("Received signal, initiating graceful shutdown")
        shutdown_event.set()
    else:
        logger.warning("Received second signal, forcing immediate shutdown...")
        for task in asyncio.all_tasks():
            if task is not asyncio.current_task():
                task.cancel()


async def run_worker_pool(config, count: int, shutdown_event: asyncio.Event) -> bool:
    """Run `count` consumer instances; True if all of them stopped cleanly."""
    if count <= 1:
        return await run_ingestion_pipeline(config, shutdown_event)

    logger.info("Starting worker instances", extra={"count": count, "worker_name": "consumer"})

    tasks = [
        asyncio.create_task(
            run_ingestion_pipeline(config, shutdown_event, instance_id=i),
            name=f"consumer-{i}",
        )
        for i in range(count)
    ]

    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
    except asyncio.CancelledError:
        logger.info("Worker pool cancelled, shutting down")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    clean = True
    for task, result in zip(tasks, results):
        if isinstance(result, BaseException):
            logger.error(f"{task.get_name()} failed: {result}", exc_info=result)
            clean = False
        elif not result:
            clean = False
    return clean


async def run(args: argparse.Namespace, config) -> bool:
    shutdown_event = get_shutdown_event()
    setup_shutdown_signal_handlers(handle_shutdown_signal)
    try:
        return await run_worker_pool(config, args.count, shutdown_event)
    finally:
        remove_shutdown_signal_handlers()


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("relay-consumer")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")
    setup_logging(
        name="relay",
        stage="consumer",
        log_dir=log_dir,
        json_format=_env_flag("JSON_LOGS", "true"),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    logger = logging.getLogger(__name__)

    try:
        overrides = {}
        if args.health_port is not None:
            overrides["health"] = {"port": args.health_port}
        config = load_config(args.config, overrides=overrides)
    except (ValueError, FileNotFoundError, KeyError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    if args.metrics_port:
        actual_port = start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    try:
        clean = asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return 1
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
        return 1
    except Exception as e:
        logger.error("Fatal error", extra={"error": str(e)}, exc_info=True)
        return 1

    logger.info("Relay shutdown complete", extra={"resolution": "clean" if clean else "errors"})
    return 0 if clean else 1


if __name__ == "__main__":
    sys.exit(main())
