"""Tests for relay Prometheus metrics helpers."""

from prometheus_client import REGISTRY

from core.resilience.reconnect import ConnectionState
from relay.common.metrics import (
    record_dead_letter,
    record_event_published,
    record_message_resolved,
    record_processing_error,
    track_connection_state,
    update_connection_status,
)


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestDeliveryMetrics:
    def test_record_message_resolved(self):
        before = sample("relay_messages_consumed_total", queue="metrics_q", outcome="acked")
        count_before = sample("relay_message_processing_duration_seconds_count", queue="metrics_q")

        record_message_resolved("metrics_q", "acked", 0.02)

        assert sample("relay_messages_consumed_total", queue="metrics_q", outcome="acked") == before + 1
        assert (
            sample("relay_message_processing_duration_seconds_count", queue="metrics_q")
            == count_before + 1
        )

    def test_record_processing_error(self):
        before = sample("relay_processing_errors_total", queue="metrics_q", error_type="ParseError")
        record_processing_error("metrics_q", "ParseError")
        assert (
            sample("relay_processing_errors_total", queue="metrics_q", error_type="ParseError")
            == before + 1
        )

    def test_record_dead_letter(self):
        before = sample("relay_dlq_messages_total", queue="metrics_q", reason="PersistError")
        record_dead_letter("metrics_q", "PersistError")
        assert sample("relay_dlq_messages_total", queue="metrics_q", reason="PersistError") == before + 1

    def test_record_event_published(self):
        before = sample("relay_events_published_total", exchange="maxwell", event_type="insert")
        record_event_published("maxwell", "insert")
        assert (
            sample("relay_events_published_total", exchange="maxwell", event_type="insert")
            == before + 1
        )


class TestConnectionMetrics:
    def test_update_connection_status(self):
        update_connection_status("metrics-broker", True)
        assert sample("relay_connection_status", component="metrics-broker") == 1.0
        update_connection_status("metrics-broker", False)
        assert sample("relay_connection_status", component="metrics-broker") == 0.0

    def test_track_connection_state_counts_attempts(self):
        before = sample("relay_connect_attempts_total", component="metrics-store")

        track_connection_state("metrics-store", ConnectionState.CONNECTING)
        track_connection_state("metrics-store", ConnectionState.READY)

        assert sample("relay_connect_attempts_total", component="metrics-store") == before + 1
        assert sample("relay_connection_status", component="metrics-store") == 1.0

        track_connection_state("metrics-store", ConnectionState.DISCONNECTED)
        assert sample("relay_connection_status", component="metrics-store") == 0.0
