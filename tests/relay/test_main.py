"""Tests for the relay consumer entry point."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from relay import __main__ as relay_main
from relay.simulation import __main__ as traffic_main


class TestParseArgs:
    def test_defaults(self):
        args = relay_main.parse_args([])
        assert args.count == 1
        assert args.config is None
        assert args.metrics_port == 8000
        assert args.health_port is None
        assert args.log_level == "INFO"
        assert args.log_to_stdout is False

    def test_options(self):
        args = relay_main.parse_args(
            ["-c", "3", "--metrics-port", "0", "--health-port", "9090", "--log-to-stdout"]
        )
        assert args.count == 3
        assert args.metrics_port == 0
        assert args.health_port == 9090
        assert args.log_to_stdout is True


class TestRunWorkerPool:
    @pytest.mark.asyncio
    async def test_single_instance_runs_directly(self, relay_config):
        with patch.object(relay_main, "run_ingestion_pipeline", AsyncMock(return_value=True)) as run:
            assert await relay_main.run_worker_pool(relay_config, 1, asyncio.Event()) is True
        run.assert_awaited_once()
        assert "instance_id" not in run.await_args.kwargs

    @pytest.mark.asyncio
    async def test_instances_get_ids(self, relay_config):
        with patch.object(relay_main, "run_ingestion_pipeline", AsyncMock(return_value=True)) as run:
            assert await relay_main.run_worker_pool(relay_config, 3, asyncio.Event()) is True
        assert sorted(c.kwargs["instance_id"] for c in run.await_args_list) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_failed_instance_makes_pool_unclean(self, relay_config):
        results = AsyncMock(side_effect=[True, RuntimeError("boom"), True])
        with patch.object(relay_main, "run_ingestion_pipeline", results):
            assert await relay_main.run_worker_pool(relay_config, 3, asyncio.Event()) is False


class TestShutdownSignal:
    @pytest.mark.asyncio
    async def test_first_signal_sets_event(self):
        with patch.object(relay_main, "_shutdown_event", None):
            relay_main.handle_shutdown_signal()
            assert relay_main.get_shutdown_event().is_set()

    @pytest.mark.asyncio
    async def test_second_signal_cancels_tasks(self):
        with patch.object(relay_main, "_shutdown_event", None):
            relay_main.get_shutdown_event().set()
            task = asyncio.create_task(asyncio.sleep(10))
            relay_main.handle_shutdown_signal()
            with pytest.raises(asyncio.CancelledError):
                await task


class TestRun:
    @pytest.mark.asyncio
    async def test_signal_handlers_removed_after_pool_exits(self, relay_config):
        args = relay_main.parse_args(["-c", "2"])
        with patch.object(relay_main, "_shutdown_event", None), \
             patch.object(relay_main, "setup_shutdown_signal_handlers") as setup, \
             patch.object(relay_main, "remove_shutdown_signal_handlers") as remove, \
             patch.object(relay_main, "run_worker_pool", AsyncMock(return_value=True)) as pool:
            assert await relay_main.run(args, relay_config) is True
        setup.assert_called_once_with(relay_main.handle_shutdown_signal)
        remove.assert_called_once_with()
        assert pool.await_args.args[1] == 2

    @pytest.mark.asyncio
    async def test_signal_handlers_removed_when_pool_raises(self, relay_config):
        args = relay_main.parse_args([])
        with patch.object(relay_main, "_shutdown_event", None), \
             patch.object(relay_main, "setup_shutdown_signal_handlers"), \
             patch.object(relay_main, "remove_shutdown_signal_handlers") as remove, \
             patch.object(relay_main, "run_worker_pool", AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(RuntimeError):
                await relay_main.run(args, relay_config)
        remove.assert_called_once_with()


class TestMain:
    def test_config_error_returns_1(self, tmp_path):
        with patch.object(relay_main, "setup_logging"):
            code = relay_main.main(
                ["--config", str(tmp_path / "missing.yaml"), "--metrics-port", "0"]
            )
        assert code == 1

    def test_clean_shutdown_returns_0(self, relay_config):
        with patch.object(relay_main, "setup_logging"), \
             patch.object(relay_main, "load_config", return_value=relay_config), \
             patch.object(relay_main, "run", AsyncMock(return_value=True)):
            assert relay_main.main(["--metrics-port", "0"]) == 0

    def test_unclean_shutdown_returns_1(self, relay_config):
        with patch.object(relay_main, "setup_logging"), \
             patch.object(relay_main, "load_config", return_value=relay_config), \
             patch.object(relay_main, "run", AsyncMock(side_effect=RuntimeError("boom"))):
            assert relay_main.main(["--metrics-port", "0"]) == 1

    def test_health_port_override(self, relay_config):
        with patch.object(relay_main, "setup_logging"), \
             patch.object(relay_main, "load_config", return_value=relay_config) as load, \
             patch.object(relay_main, "run", AsyncMock(return_value=True)):
            relay_main.main(["--metrics-port", "0", "--health-port", "9191"])
        assert load.call_args.kwargs["overrides"] == {"health": {"port": 9191}}


class TestTrafficMain:
    def test_overrides_from_args(self):
        args = traffic_main.parse_args(["--operations", "20", "--interval", "0.5"])
        assert traffic_main.traffic_overrides(args) == {
            "traffic": {"operations": 20, "interval_seconds": 0.5}
        }

    def test_no_overrides(self):
        assert traffic_main.traffic_overrides(traffic_main.parse_args([])) == {}

    def test_main_runs_generator(self, relay_config):
        with patch.object(traffic_main, "setup_logging"), \
             patch.object(traffic_main, "load_config", return_value=relay_config), \
             patch.object(traffic_main, "run", AsyncMock(return_value=4)):
            assert traffic_main.main(["--seed", "1"]) == 0
