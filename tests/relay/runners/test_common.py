"""Tests for the shared worker execution template."""

import asyncio
from unittest.mock import MagicMock

import pytest

from core.errors.exceptions import ConnectionError
from core.logging.context import get_log_context
from relay.runners.common import execute_worker_with_shutdown


class FakeWorker:
    """Worker whose start() blocks until stop() when block_start is set."""

    def __init__(self, start_error=None, stop_result=True, block_start=False):
        self.start_error = start_error
        self.stop_result = stop_result
        self.block_start = block_start
        self.started = 0
        self.stopped = 0
        self._stopped = asyncio.Event()

    async def start(self):
        self.started += 1
        if self.block_start:
            await self._stopped.wait()
            raise ConnectionError("closed before connection became ready")
        if self.start_error:
            raise self.start_error

    async def stop(self):
        self.stopped += 1
        self._stopped.set()
        return self.stop_result


class FakeWorkerWithHealth(FakeWorker):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.health_server = MagicMock()
        self.health_server.actual_port = 8080


async def shutdown_soon(event: asyncio.Event, delay: float = 0.01) -> None:
    await asyncio.sleep(delay)
    event.set()


class TestExecuteWorkerWithShutdown:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown(self):
        worker = FakeWorker()
        shutdown = asyncio.Event()
        asyncio.create_task(shutdown_soon(shutdown))

        clean = await execute_worker_with_shutdown(worker, "consumer", shutdown)

        assert clean is True
        assert worker.started == 1
        assert worker.stopped == 1

    @pytest.mark.asyncio
    async def test_sets_log_context(self):
        worker = FakeWorker()
        shutdown = asyncio.Event()
        shutdown.set()

        await execute_worker_with_shutdown(worker, "consumer", shutdown, instance_id=2)

        context = get_log_context()
        assert context["stage"] == "consumer"
        assert context["instance_id"] == 2
        assert context["worker_id"] == "consumer-2"

    @pytest.mark.asyncio
    async def test_reports_unclean_stop(self):
        worker = FakeWorker(stop_result=False)
        shutdown = asyncio.Event()
        shutdown.set()

        assert await execute_worker_with_shutdown(worker, "tailer", shutdown) is False

    @pytest.mark.asyncio
    async def test_shutdown_while_start_blocked(self):
        worker = FakeWorker(block_start=True)
        shutdown = asyncio.Event()
        asyncio.create_task(shutdown_soon(shutdown))

        clean = await asyncio.wait_for(
            execute_worker_with_shutdown(worker, "consumer", shutdown), timeout=2.0
        )

        assert clean is True
        assert worker.stopped == 1

    @pytest.mark.asyncio
    async def test_start_error_without_health_server_raises(self):
        worker = FakeWorker(start_error=RuntimeError("bad config"))
        shutdown = asyncio.Event()

        with pytest.raises(RuntimeError, match="bad config"):
            await execute_worker_with_shutdown(worker, "tailer", shutdown)
        assert worker.stopped == 1

    @pytest.mark.asyncio
    async def test_start_error_enters_error_mode(self):
        worker = FakeWorkerWithHealth(start_error=RuntimeError("bad config"))
        shutdown = asyncio.Event()
        asyncio.create_task(shutdown_soon(shutdown, delay=0.05))

        await asyncio.wait_for(
            execute_worker_with_shutdown(worker, "consumer", shutdown), timeout=2.0
        )

        worker.health_server.set_error.assert_called_once_with("Fatal error: bad config")
        assert shutdown.is_set()
        assert worker.stopped == 1

    @pytest.mark.asyncio
    async def test_error_mode_reports_unclean(self):
        worker = FakeWorkerWithHealth(start_error=RuntimeError("store unreachable"))
        shutdown = asyncio.Event()
        asyncio.create_task(shutdown_soon(shutdown, delay=0.05))

        clean = await asyncio.wait_for(
            execute_worker_with_shutdown(worker, "consumer", shutdown), timeout=2.0
        )

        assert clean is False
        assert worker.stopped == 1
