"""
Prometheus metrics for relay monitoring.

Focused on essential metrics:
- Delivery outcomes (acked, requeued, dead-lettered)
- Per-message processing duration
- Connection status and reconnect attempts per component
- Published synthetic events
"""

from prometheus_client import Counter, Gauge, Histogram

from core.resilience.reconnect import ConnectionState

# =============================================================================
# Core Metrics
# =============================================================================

messages_consumed_counter = Counter(
    "relay_messages_consumed_total",
    "Total deliveries resolved, by outcome",
    labelnames=["queue", "outcome"],
)

processing_errors_counter = Counter(
    "relay_processing_errors_total",
    "Total processing errors by error category",
    labelnames=["queue", "error_type"],
)

dlq_messages_counter = Counter(
    "relay_dlq_messages_total",
    "Total messages sent to the dead-letter queue",
    labelnames=["queue", "reason"],
)

message_processing_duration_seconds = Histogram(
    "relay_message_processing_duration_seconds",
    "Time spent processing individual deliveries",
    labelnames=["queue"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

connection_status_gauge = Gauge(
    "relay_connection_status",
    "Connection status (1=ready, 0=not ready)",
    labelnames=["component"],
)

reconnect_attempts_counter = Counter(
    "relay_connect_attempts_total",
    "Total connection attempts, including the first",
    labelnames=["component"],
)

events_published_counter = Counter(
    "relay_events_published_total",
    "Synthetic change events published",
    labelnames=["exchange", "event_type"],
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_message_resolved(queue: str, outcome: str, duration_seconds: float) -> None:
    """Record a resolved delivery (outcome: ack, requeue, dead_letter)."""
    messages_consumed_counter.labels(queue=queue, outcome=outcome).inc()
    message_processing_duration_seconds.labels(queue=queue).observe(duration_seconds)


def record_processing_error(queue: str, error_type: str) -> None:
    processing_errors_counter.labels(queue=queue, error_type=error_type).inc()


def record_dead_letter(queue: str, reason: str) -> None:
    dlq_messages_counter.labels(queue=queue, reason=reason).inc()


def record_event_published(exchange: str, event_type: str) -> None:
    events_published_counter.labels(exchange=exchange, event_type=event_type).inc()


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def track_connection_state(component: str, state: ConnectionState) -> None:
    """State listener for ReconnectingResource instances."""
    if state == ConnectionState.CONNECTING:
        reconnect_attempts_counter.labels(component=component).inc()
    update_connection_status(component, state == ConnectionState.READY)


__all__ = [
    "record_message_resolved",
    "record_processing_error",
    "record_dead_letter",
    "record_event_published",
    "update_connection_status",
    "track_connection_state",
]
