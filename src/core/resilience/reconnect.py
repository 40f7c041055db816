"""
Supervised connection lifecycle for long-lived network clients.

States:
- DISCONNECTED: No usable connection; a reconnect may be scheduled
- CONNECTING: Supervisor task is opening and validating a connection
- READY: Connection validated and usable
- CLOSING: User-initiated close in progress
- CLOSED: Closed by the user, never reconnects

A connection is never reused after its first error: mark_failed() discards
it and the supervisor opens a fresh one after the retry delay. The
supervisor retries forever until close() is called.

Usage:
    class StoreClient(ReconnectingResource):
        async def _open(self): ...      # create + validate, raise on failure
        async def _discard(self): ...   # drop handles, never raises
        async def _shutdown(self): ...  # user close, may raise

    await client.connect()              # blocks until READY
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from core.errors.exceptions import ConnectionError, ShutdownError
from core.resilience.retry import RetryConfig, fixed_interval

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


StateListener = Callable[[str, ConnectionState], None]


class ReconnectingResource:
    """
    Base class implementing the connect / validate / ready / discard cycle.

    Subclasses implement _open, _discard and _shutdown. All methods must be
    called from the event loop that owns the resource.
    """

    def __init__(
        self,
        name: str,
        reconnect_delay: float = 5.0,
        retry_config: RetryConfig | None = None,
    ):
        self.name = name
        self.retry_config = retry_config or fixed_interval(reconnect_delay)
        self._state = ConnectionState.DISCONNECTED
        self._ready = asyncio.Event()
        self._closed = asyncio.Event()
        self._supervisor: asyncio.Task | None = None
        self._connect_attempts = 0
        self._state_listeners: list[StateListener] = []

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    async def _open(self) -> None:
        """Create and validate a connection. Raise on any failure."""
        raise NotImplementedError

    async def _discard(self) -> None:
        """Drop the current connection handles without raising."""
        raise NotImplementedError

    async def _shutdown(self) -> None:
        """Close the current connection for good. May raise."""
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def connect_attempts(self) -> int:
        return self._connect_attempts

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as listener(name, state) on every transition."""
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        if state == ConnectionState.READY:
            self._ready.set()
        else:
            self._ready.clear()

        logger.debug(
            f"{self.name} connection {previous.value} -> {state.value}",
            extra={"component": self.name, "connection_state": state.value},
        )
        for listener in self._state_listeners:
            try:
                listener(self.name, state)
            except Exception:
                logger.exception(
                    "State listener failed", extra={"component": self.name}
                )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Block until a validated connection exists.

        Never gives up on its own; only close() ends the wait.

        Raises:
            ConnectionError: If the resource was closed before it became ready
        """
        if self.is_ready:
            return
        self._ensure_supervisor()
        if not await self.wait_ready():
            raise ConnectionError(
                f"{self.name} closed before connection became ready",
                context={"component": self.name},
            )

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """
        Wait until READY, the resource is closed, or the timeout expires.

        Returns:
            True if the resource is ready
        """
        if self.is_ready:
            return True
        if self.is_closed:
            return False

        ready_waiter = asyncio.ensure_future(self._ready.wait())
        closed_waiter = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {ready_waiter, closed_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in (ready_waiter, closed_waiter):
                if not waiter.done():
                    waiter.cancel()
        return self.is_ready

    def mark_failed(self, error: BaseException | None = None) -> None:
        """
        Discard the current connection and schedule a reconnect.

        Safe to call repeatedly and from driver close callbacks; a failure
        reported while a reconnect is already underway is ignored.
        """
        if self.is_closed or self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.CLOSING,
        ):
            return
        if self._supervisor is not None and not self._supervisor.done():
            return

        delay = self.retry_config.get_delay(0)
        logger.warning(
            f"{self.name} connection lost, reconnecting in {delay:.1f}s: {error}",
            extra={
                "component": self.name,
                "delay_seconds": delay,
                "error_type": type(error).__name__ if error else None,
            },
        )
        self._set_state(ConnectionState.DISCONNECTED)
        self._supervisor = asyncio.create_task(
            self._supervise(initial_delay=delay, discard_first=True),
            name=f"{self.name}-reconnect",
        )

    def _ensure_supervisor(self) -> None:
        if self._supervisor is None or self._supervisor.done():
            self._supervisor = asyncio.create_task(
                self._supervise(), name=f"{self.name}-connect"
            )

    async def _supervise(self, initial_delay: float = 0.0, discard_first: bool = False) -> None:
        if discard_first:
            await self._discard()
        if initial_delay > 0:
            await asyncio.sleep(initial_delay)

        attempt = 0
        while not self.is_closed:
            attempt += 1
            self._connect_attempts += 1
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._open()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._discard()
                self._set_state(ConnectionState.DISCONNECTED)
                delay = self.retry_config.get_delay(attempt - 1)
                logger.warning(
                    f"Failed to connect {self.name} (attempt {attempt}), "
                    f"retrying in {delay:.1f}s: {e}",
                    extra={
                        "component": self.name,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error_type": type(e).__name__,
                    },
                )
                await asyncio.sleep(delay)
                continue

            self._set_state(ConnectionState.READY)
            logger.info(
                f"{self.name} connection ready",
                extra={"component": self.name, "attempt": attempt},
            )
            return

    async def close(self) -> None:
        """
        User-initiated close. Stops reconnecting and releases the connection.

        Raises:
            ShutdownError: If the underlying close fails
        """
        if self.is_closed:
            return

        self._closed.set()
        self._set_state(ConnectionState.CLOSING)

        if self._supervisor is not None and not self._supervisor.done():
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
        self._supervisor = None

        try:
            await self._shutdown()
        except Exception as e:
            raise ShutdownError(
                f"Failed to close {self.name} connection",
                cause=e,
                context={"component": self.name},
            ) from e
        finally:
            self._set_state(ConnectionState.CLOSED)

        logger.info(f"{self.name} connection closed", extra={"component": self.name})


__all__ = [
    "ConnectionState",
    "ReconnectingResource",
    "StateListener",
]
