"""
Health check endpoints for relay processes.

- /health/live - Liveness probe (is the event loop responsive?)
- /health/ready - Readiness probe (are the broker and store connections ready?)

Usage:
    health = HealthCheckServer(port=8080, worker_name="relay-consumer-0")
    await health.start()
    health.set_ready(broker_connected=True, store_connected=True)
    ...
    await health.stop()
"""

import asyncio
import logging
import threading
import time
from datetime import UTC, datetime

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """
    HTTP server for liveness and readiness probes.

    Runs aiohttp in a dedicated thread with its own event loop so a stalled
    relay loop still answers probes (and reports itself stale).

    Readiness:
        200 only if the broker connection and the store connection are both
        ready and no error state is set. 503 otherwise, with the reasons.
    """

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "relay",
        enabled: bool = True,
        heartbeat_timeout_seconds: float = 60.0,
    ):
        """
        Args:
            port: HTTP port. 0 for dynamic assignment, None to disable.
            worker_name: Name of the worker for logging and responses
            enabled: If False, start() and stop() are no-ops
            heartbeat_timeout_seconds: Max seconds since last heartbeat before
                liveness returns 503. 0 disables the check.
        """
        self.port = port
        self.worker_name = worker_name
        self._enabled = enabled and port is not None
        self._ready = False
        self._broker_connected = False
        self._store_connected = False
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None
        self._error_message: str | None = None

        self._heartbeat_timeout_seconds = heartbeat_timeout_seconds
        self._last_heartbeat: float | None = None

        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        self._thread: threading.Thread | None = None
        self._server_started = threading.Event()
        self._shutdown_event = threading.Event()
        self._state_lock = threading.Lock()

    def set_ready(
        self,
        broker_connected: bool | None = None,
        store_connected: bool | None = None,
    ) -> None:
        """
        Update readiness inputs. Arguments left as None keep their value.

        Args:
            broker_connected: Whether the broker connection is ready
            store_connected: Whether the store connection is ready
        """
        with self._state_lock:
            if broker_connected is not None:
                self._broker_connected = broker_connected
            if store_connected is not None:
                self._store_connected = store_connected

            old_ready = self._ready
            self._ready = (
                self._broker_connected
                and self._store_connected
                and self._error_message is None
            )

            if old_ready != self._ready:
                logger.info(
                    f"Readiness status changed: {old_ready} -> {self._ready}",
                    extra={
                        "component": "health",
                        "connection_state": "ready" if self._ready else "not_ready",
                    },
                )

    def set_error(self, error_message: str) -> None:
        """Set an error state that prevents readiness."""
        with self._state_lock:
            self._error_message = error_message
            self._ready = False
        logger.error(
            f"Health check error state set: {error_message}",
            extra={"error": error_message},
        )

    def clear_error(self) -> None:
        with self._state_lock:
            self._error_message = None
            self._ready = self._broker_connected and self._store_connected

    @property
    def error_message(self) -> str | None:
        with self._state_lock:
            return self._error_message

    def record_heartbeat(self) -> None:
        """Record a heartbeat from the relay event loop."""
        with self._state_lock:
            self._last_heartbeat = time.monotonic()

    def _checks(self) -> dict[str, bool]:
        return {
            "broker_connected": self._broker_connected,
            "store_connected": self._store_connected,
        }

    async def handle_liveness(self, request: web.Request) -> web.Response:
        with self._state_lock:
            last_hb = self._last_heartbeat
            hb_timeout = self._heartbeat_timeout_seconds

        uptime_seconds = int((datetime.now(UTC) - self._started_at).total_seconds())

        if hb_timeout > 0 and last_hb is not None:
            staleness = time.monotonic() - last_hb
            if staleness > hb_timeout:
                logger.warning(
                    "Liveness check failed: event loop heartbeat stale",
                    extra={"delay_seconds": round(staleness, 1)},
                )
                return web.json_response(
                    {
                        "status": "unhealthy",
                        "reason": "event_loop_stale",
                        "worker": self.worker_name,
                        "heartbeat_staleness_seconds": round(staleness, 1),
                        "uptime_seconds": uptime_seconds,
                        "timestamp": datetime.now(UTC).isoformat(),
                    },
                    status=503,
                )

        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": uptime_seconds,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=200,
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        with self._state_lock:
            error_message = self._error_message
            ready = self._ready
            checks = self._checks()

        if error_message:
            return web.json_response(
                {
                    "status": "error",
                    "worker": self.worker_name,
                    "error": error_message,
                    "checks": checks,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=503,
            )

        if ready:
            return web.json_response(
                {
                    "status": "ready",
                    "worker": self.worker_name,
                    "checks": checks,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=200,
            )

        reasons = []
        if not checks["broker_connected"]:
            reasons.append("broker_disconnected")
        if not checks["store_connected"]:
            reasons.append("store_disconnected")

        return web.json_response(
            {
                "status": "not_ready",
                "worker": self.worker_name,
                "reasons": reasons,
                "checks": checks,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=503,
        )

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    def _run_server_thread(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._serve())
        except Exception as e:
            logger.error(f"Health server thread error: {e}", exc_info=True)
        finally:
            loop.close()

    async def _serve(self) -> None:
        try:
            started = await self._try_start_on_port(self.port)
            if not started and self.port != 0:
                logger.warning(f"Port {self.port} in use, falling back to dynamic port assignment")
                started = await self._try_start_on_port(0)

            # Signal even on failure so start() never deadlocks
            self._server_started.set()
            if not started:
                logger.warning("Could not start health check server")
                return

            logger.info(
                f"Health check server started on port {self._actual_port}",
                extra={"component": "health"},
            )
            while not self._shutdown_event.is_set():
                await asyncio.sleep(0.5)
        finally:
            if self._runner:
                await self._runner.cleanup()
                self._runner = None

    async def _try_start_on_port(self, port: int) -> bool:
        """Returns False if the port is in use."""
        try:
            self._runner = web.AppRunner(self.create_app())
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, "0.0.0.0", port, reuse_address=True)
            await self._site.start()

            server = self._site._server
            if server is not None and server.sockets:
                self._actual_port = server.sockets[0].getsockname()[1]
            else:
                self._actual_port = port
            return True
        except OSError as e:
            # errno 98 (Linux) or 10048 (Windows)
            if e.errno in (98, 10048):
                if self._runner:
                    await self._runner.cleanup()
                self._runner = None
                self._site = None
                return False
            raise

    async def start(self) -> None:
        """
        Start serving in a dedicated thread.

        Never raises: on failure the worker continues without health checks.
        """
        if not self._enabled:
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._thread = threading.Thread(
            target=self._run_server_thread,
            name=f"health-server-{self.worker_name}",
            daemon=True,
        )
        self._thread.start()

        if not await asyncio.to_thread(self._server_started.wait, 5.0):
            logger.error("Health server failed to start listening")
            self._enabled = False

    async def stop(self) -> None:
        if not self._enabled or not self._thread:
            return

        self._shutdown_event.set()
        await asyncio.to_thread(self._thread.join, 5.0)
        if self._thread.is_alive():
            logger.warning("Health server thread did not stop cleanly")
        else:
            logger.info("Health check server stopped")

        self._thread = None
        self._actual_port = None
        self._server_started.clear()
        self._shutdown_event.clear()

    @property
    def is_ready(self) -> bool:
        with self._state_lock:
            return self._ready

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    @property
    def is_enabled(self) -> bool:
        return self._enabled


__all__ = ["HealthCheckServer"]
