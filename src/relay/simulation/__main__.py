"""Publish synthetic change events to the relay's exchange. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import load_config
from core.logging.setup import setup_logging
from relay.common.signals import remove_shutdown_signal_handlers, setup_shutdown_signal_handlers
from relay.runners.relay_runners import run_traffic_generator

PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate synthetic change-event traffic")
    parser.add_argument(
        "--operations",
        type=int,
        default=None,
        help="Number of operations to perform (default: from config, 10)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Interval between batches in seconds (default: from config, 2.0)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Operations per batch (default: CONCURRENCY env var or 5)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for a reproducible event stream",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    return parser.parse_args(argv)


def traffic_overrides(args: argparse.Namespace) -> dict:
    traffic = {}
    if args.operations is not None:
        traffic["operations"] = args.operations
    if args.interval is not None:
        traffic["interval_seconds"] = args.interval
    if args.concurrency is not None:
        traffic["concurrency"] = args.concurrency
    return {"traffic": traffic} if traffic else {}


async def run(args: argparse.Namespace, config) -> int:
    shutdown_event = asyncio.Event()
    setup_shutdown_signal_handlers(shutdown_event.set)
    try:
        return await run_traffic_generator(config, shutdown_event, seed=args.seed)
    finally:
        remove_shutdown_signal_handlers()


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)
    setup_logging(
        name="relay",
        stage="traffic",
        console_level=getattr(logging, args.log_level),
        log_to_stdout=True,
    )

    try:
        config = load_config(args.config, overrides=traffic_overrides(args))
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logger.info(
        f"Starting traffic with {config.traffic.operations} operations, "
        f"{config.traffic.interval_seconds}s interval, and "
        f"{config.traffic.concurrency} concurrent operations"
    )
    try:
        published = asyncio.run(run(args, config))
    except Exception as e:
        logger.error(f"Traffic generation failed: {e}", exc_info=True)
        return 1

    logger.info(f"All operations completed: {published} events published")
    return 0


if __name__ == "__main__":
    sys.exit(main())
