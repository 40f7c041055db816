"""Tests for PeriodicStatsLogger."""

import asyncio
import logging

import pytest

from core.logging.periodic_logger import PeriodicStatsLogger, format_cycle_output


def _stats(succeeded=0, requeued=0, dead_lettered=0):
    return {
        "records_succeeded": succeeded,
        "records_requeued": requeued,
        "records_dead_lettered": dead_lettered,
    }


class TestFormatCycleOutput:
    def test_totals_only(self):
        assert format_cycle_output(0, _stats(3, 1, 0)) == "Cycle 0: acked=3, requeued=1, dead_lettered=0"

    def test_with_deltas_and_rate(self):
        msg = format_cycle_output(
            2, _stats(30, 2, 1), since_last=_stats(20, 0, 0), interval_seconds=10
        )
        assert msg == (
            "Cycle 2: acked=30 (+20), requeued=2 (+0), dead_lettered=1 (+0) [2.0 msg/s]"
        )

    def test_missing_keys_default_to_zero(self):
        assert format_cycle_output(1, {}) == "Cycle 1: acked=0, requeued=0, dead_lettered=0"


class TestPeriodicStatsLogger:
    def _make_logger(self, stats, interval=60):
        return PeriodicStatsLogger(
            interval_seconds=interval,
            get_stats=lambda: stats,
            stage="consumer",
            worker_id="consumer-0",
        )

    def test_stores_configuration(self):
        stats_logger = self._make_logger(_stats(), interval=30)
        assert stats_logger.interval_seconds == 30
        assert stats_logger.stage == "consumer"
        assert stats_logger.worker_id == "consumer-0"
        assert stats_logger.is_running is False

    def test_first_cycle_mentions_interval(self, caplog):
        stats_logger = self._make_logger(_stats(1), interval=60)
        with caplog.at_level(logging.INFO, logger="core.logging.periodic_logger"):
            msg = stats_logger.log_cycle()
        assert msg == "Cycle 0: acked=1, requeued=0, dead_lettered=0 [cycle output every 60s]"
        assert caplog.records[-1].records_succeeded == 1

    def test_later_cycles_report_deltas(self):
        stats = _stats(5)
        stats_logger = self._make_logger(stats, interval=10)
        stats_logger.log_cycle()

        stats["records_succeeded"] = 15
        stats_logger._cycle_count = 1
        msg = stats_logger.log_cycle()
        assert msg == "Cycle 1: acked=15 (+10), requeued=0 (+0), dead_lettered=0 (+0) [1.0 msg/s]"

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        stats_logger = self._make_logger(_stats(), interval=60)
        stats_logger.start()
        await asyncio.sleep(0)
        assert stats_logger.is_running is True

        await stats_logger.stop()
        assert stats_logger.is_running is False

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self, caplog):
        stats_logger = self._make_logger(_stats(), interval=60)
        stats_logger.start()
        task = stats_logger._task
        stats_logger.start()
        assert stats_logger._task is task
        assert "already running" in caplog.text
        await stats_logger.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await self._make_logger(_stats()).stop()

    @pytest.mark.asyncio
    async def test_logs_each_interval(self):
        calls = []

        def get_stats():
            calls.append(1)
            return _stats()

        stats_logger = PeriodicStatsLogger(0.01, get_stats, "consumer", "consumer-0")
        stats_logger.start()
        await asyncio.sleep(0.05)
        await stats_logger.stop()
        assert len(calls) >= 2
