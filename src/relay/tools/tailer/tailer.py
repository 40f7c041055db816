"""
Change tailer: prints change events as they land in the store.

Polls for documents whose received_at is newer than the previous poll, less a
settle window, and renders them with format_change. Read-only; never writes
to the store.
"""

import asyncio
import logging
import time

from core.errors.exceptions import PipelineError, ShutdownError
from relay.common.store import RECEIVED_AT_FIELD, StoreClient
from relay.tools.tailer.formatting import format_change

logger = logging.getLogger(__name__)


def _after(received_at, moment: float) -> bool:
    return isinstance(received_at, (int, float)) and received_at > moment


class ChangeTailer:
    """
    Poll loop over the changes collection.

    Starts from the current time, so only changes ingested after start are
    shown. After each successful query the watermark moves to the time that
    poll started. Each query reaches settle_seconds behind the watermark, so
    a document stamped before a poll but committed after it is still shown;
    documents already shown inside that window are skipped by _id.
    """

    def __init__(
        self,
        store: StoreClient,
        poll_interval: float = 5.0,
        start_time: float | None = None,
        settle_seconds: float = 30.0,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.settle_seconds = settle_seconds
        self.start_time = time.time() if start_time is None else start_time
        self.last_check_time = self.start_time
        self._task: asyncio.Task | None = None
        self._running = False
        self._polls = 0
        self._changes_seen = 0
        self._shown: set = set()

    @property
    def changes_seen(self) -> int:
        return self._changes_seen

    def query_floor(self) -> float:
        """Lower received_at bound of the next query, never before start."""
        return max(self.last_check_time - self.settle_seconds, self.start_time)

    async def poll_once(self) -> list[str]:
        """Fetch and log new changes; returns the rendered lines."""
        poll_started = time.time()
        found = await self.store.find_received_after(self.query_floor())
        self._polls += 1

        changes = [c for c in found if c.get("_id") is None or c["_id"] not in self._shown]
        self.last_check_time = poll_started
        next_floor = self.query_floor()
        self._shown = {
            c["_id"]
            for c in found
            if c.get("_id") is not None and _after(c.get(RECEIVED_AT_FIELD), next_floor)
        }

        lines: list[str] = []
        for change in changes:
            for line in format_change(change):
                logger.info(line)
                lines.append(line)

        if changes:
            self._changes_seen += len(changes)
            logger.info(
                f"Found {len(changes)} new changes",
                extra={"changes_found": len(changes)},
            )
        else:
            logger.info("No new changes found", extra={"changes_found": 0})
        return lines

    async def _run(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except PipelineError as e:
                logger.warning(f"Error polling for changes: {e}")
            await asyncio.sleep(self.poll_interval)

    async def start(self) -> None:
        logger.info("Starting change tailer", extra={"interval_seconds": self.poll_interval})
        await self.store.connect()
        self._running = True
        self._task = asyncio.create_task(self._run(), name="change-tailer")

    async def stop(self) -> bool:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        try:
            await self.store.close()
        except ShutdownError as e:
            logger.error(f"Error closing store: {e}")
            return False

        logger.info(
            "Change tailer stopped",
            extra={"polls": self._polls, "changes_found": self._changes_seen},
        )
        return True


__all__ = ["ChangeTailer"]
