"""Print change events as they are ingested. Use --help for usage."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import load_config
from core.logging.setup import setup_logging
from relay.common.signals import remove_shutdown_signal_handlers, setup_shutdown_signal_handlers
from relay.runners.relay_runners import run_change_tailer

PROJECT_ROOT = Path(__file__).parent.parent.parent.parent.parent

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tail change events stored by the relay")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls (default: from config, 5)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    return parser.parse_args(argv)


async def run(config) -> None:
    shutdown_event = asyncio.Event()
    setup_shutdown_signal_handlers(shutdown_event.set)
    try:
        await run_change_tailer(config, shutdown_event)
    finally:
        remove_shutdown_signal_handlers()


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)
    setup_logging(name="relay", stage="tailer", log_to_stdout=True, console_level=logging.INFO)

    overrides = {}
    if args.interval is not None:
        overrides["tailer"] = {"poll_interval_seconds": args.interval}
    try:
        config = load_config(args.config, overrides=overrides)
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logger.info("Starting change tailer...")
    try:
        asyncio.run(run(config))
    except Exception as e:
        logger.error(f"Tailer failed: {e}", exc_info=True)
        return 1

    logger.info("Monitoring stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
