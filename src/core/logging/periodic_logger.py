"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

STAT_KEYS = ("records_succeeded", "records_requeued", "records_dead_lettered")


def format_cycle_output(
    cycle_count: int,
    stats: dict[str, int],
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 0,
) -> str:
    """
    Build the one-line cycle summary.

    Example:
        Cycle 12: acked=340 (+25), requeued=3 (+0), dead_lettered=0 (+0) [2.5 msg/s]
    """
    labels = {
        "records_succeeded": "acked",
        "records_requeued": "requeued",
        "records_dead_lettered": "dead_lettered",
    }
    parts = []
    for key in STAT_KEYS:
        part = f"{labels[key]}={stats.get(key, 0)}"
        if since_last is not None:
            part += f" (+{since_last.get(key, 0)})"
        parts.append(part)

    msg = f"Cycle {cycle_count}: " + ", ".join(parts)
    if since_last is not None and interval_seconds > 0:
        rate = sum(since_last.values()) / interval_seconds
        msg += f" [{rate:.1f} msg/s]"
    return msg


class PeriodicStatsLogger:
    """
    Periodic statistics logging for workers with delta tracking.

    Workers provide a callback returning cumulative counts; the logger
    reports the totals and the change since the previous cycle.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        """
        Args:
            interval_seconds: Logging interval in seconds
            get_stats: Callback returning cumulative counts keyed by STAT_KEYS
            stage: Stage name for logging context
            worker_id: Worker identifier
        """
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous_stats: dict[str, int] = {}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic logging task."""
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic logging task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _snapshot(self) -> dict[str, int]:
        stats = self.get_stats()
        return {key: int(stats.get(key, 0)) for key in STAT_KEYS}

    def log_cycle(self) -> str:
        """Log one cycle and return the formatted message."""
        current = self._snapshot()
        if self._cycle_count == 0:
            msg = format_cycle_output(0, current)
            msg = f"{msg} [cycle output every {self.interval_seconds}s]"
            deltas: dict[str, int] = {}
        else:
            deltas = {key: current[key] - self._previous_stats.get(key, 0) for key in current}
            msg = format_cycle_output(
                self._cycle_count,
                current,
                since_last=deltas,
                interval_seconds=self.interval_seconds,
            )

        self._previous_stats = current
        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                **current,
                **{f"delta_{key}": value for key, value in deltas.items()},
            },
        )
        return msg

    async def _run(self) -> None:
        self.log_cycle()
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._cycle_count += 1
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
