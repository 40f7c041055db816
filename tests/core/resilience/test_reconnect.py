"""Tests for the supervised connect / discard / reconnect cycle."""

import asyncio

import pytest

from core.errors.exceptions import ConnectionError, ShutdownError
from core.resilience.reconnect import ConnectionState, ReconnectingResource


class FakeResource(ReconnectingResource):
    """Fails the first `failures` opens, then succeeds."""

    def __init__(self, failures: int = 0, shutdown_error: Exception | None = None):
        super().__init__("fake", reconnect_delay=0.01)
        self.failures = failures
        self.shutdown_error = shutdown_error
        self.opened = 0
        self.discarded = 0
        self.shutdowns = 0

    async def _open(self):
        self.opened += 1
        if self.opened <= self.failures:
            raise OSError("connection refused")

    async def _discard(self):
        self.discarded += 1

    async def _shutdown(self):
        self.shutdowns += 1
        if self.shutdown_error:
            raise self.shutdown_error


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_reaches_ready(self):
        resource = FakeResource()
        await resource.connect()

        assert resource.state == ConnectionState.READY
        assert resource.is_ready
        assert resource.connect_attempts == 1
        await resource.close()

    @pytest.mark.asyncio
    async def test_retries_until_open_succeeds(self):
        resource = FakeResource(failures=3)
        await resource.connect()

        assert resource.opened == 4
        assert resource.discarded == 3
        assert resource.connect_attempts == 4
        await resource.close()

    @pytest.mark.asyncio
    async def test_connect_when_ready_is_noop(self):
        resource = FakeResource()
        await resource.connect()
        await resource.connect()

        assert resource.opened == 1
        await resource.close()

    @pytest.mark.asyncio
    async def test_close_while_connecting_raises(self):
        resource = FakeResource(failures=10**6)
        connect_task = asyncio.create_task(resource.connect())
        await asyncio.sleep(0.03)

        await resource.close()

        with pytest.raises(ConnectionError):
            await connect_task
        assert resource.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_wait_ready_timeout(self):
        resource = FakeResource(failures=10**6)
        resource._ensure_supervisor()

        assert await resource.wait_ready(timeout=0.02) is False
        await resource.close()


class TestMarkFailed:
    @pytest.mark.asyncio
    async def test_discards_and_reconnects(self):
        resource = FakeResource()
        await resource.connect()

        resource.mark_failed(OSError("connection reset"))
        assert resource.state == ConnectionState.DISCONNECTED
        assert not resource.is_ready

        assert await resource.wait_ready(timeout=1.0)
        assert resource.opened == 2
        assert resource.discarded == 1
        await resource.close()

    @pytest.mark.asyncio
    async def test_repeated_failures_schedule_one_reconnect(self):
        resource = FakeResource()
        await resource.connect()

        resource.mark_failed(OSError("a"))
        supervisor = resource._supervisor
        resource.mark_failed(OSError("b"))

        assert resource._supervisor is supervisor
        await resource.wait_ready(timeout=1.0)
        assert resource.opened == 2
        await resource.close()

    @pytest.mark.asyncio
    async def test_ignored_after_close(self):
        resource = FakeResource()
        await resource.connect()
        await resource.close()

        resource.mark_failed(OSError("late callback"))
        assert resource.state == ConnectionState.CLOSED
        assert resource._supervisor is None


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        resource = FakeResource()
        await resource.connect()
        await resource.close()
        await resource.close()

        assert resource.shutdowns == 1
        assert resource.is_closed

    @pytest.mark.asyncio
    async def test_shutdown_failure_raises_shutdown_error(self):
        resource = FakeResource(shutdown_error=RuntimeError("socket stuck"))
        await resource.connect()

        with pytest.raises(ShutdownError) as exc_info:
            await resource.close()
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert resource.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_wait_ready_after_close(self):
        resource = FakeResource()
        await resource.close()

        assert await resource.wait_ready() is False


class TestStateListeners:
    @pytest.mark.asyncio
    async def test_listener_sees_transitions(self):
        resource = FakeResource(failures=1)
        seen = []
        resource.add_state_listener(lambda name, state: seen.append((name, state)))

        await resource.connect()
        await resource.close()

        assert [state for _, state in seen] == [
            ConnectionState.CONNECTING,
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.READY,
            ConnectionState.CLOSING,
            ConnectionState.CLOSED,
        ]
        assert {name for name, _ in seen} == {"fake"}

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_transition(self):
        resource = FakeResource()

        def broken(name, state):
            raise RuntimeError("listener bug")

        resource.add_state_listener(broken)
        await resource.connect()

        assert resource.is_ready
        await resource.close()
