"""Bounded redelivery and dead-letter routing for failed deliveries."""

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass

from core.errors.exceptions import PipelineError, classify_exception
from core.types import ErrorCategory
from core.resilience.retry import RetryConfig, with_retry_async
from core.utils.json_serializers import json_serializer
from relay.common.broker import BrokerClient
from relay.common.metrics import record_dead_letter
from relay.common.types import DeliveredMessage

logger = logging.getLogger(__name__)

# Short bounded retry; on exhaustion the delivery is requeued instead
DLQ_PUBLISH_RETRY = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=2.0)


# =============================================================================
# Redelivery decisions
# =============================================================================


@dataclass(frozen=True)
class Retry:
    """Requeue the message for another delivery."""

    delivery_count: int


@dataclass(frozen=True)
class DeadLetter:
    """Stop redelivering; route the message to the dead-letter queue."""

    delivery_count: int


RedeliveryDecision = Retry | DeadLetter


class DeliveryTracker:
    """
    Counts failed deliveries per message within this process.

    Used when the broker does not report a delivery count (classic queues).
    Entries are evicted least-recently-used beyond max_entries.
    """

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._failures: OrderedDict[str, int] = OrderedDict()

    def record_failure(self, fingerprint: str) -> int:
        count = self._failures.pop(fingerprint, 0) + 1
        self._failures[fingerprint] = count
        while len(self._failures) > self.max_entries:
            self._failures.popitem(last=False)
        return count

    def failures(self, fingerprint: str) -> int:
        return self._failures.get(fingerprint, 0)

    def forget(self, fingerprint: str) -> None:
        self._failures.pop(fingerprint, None)

    def __len__(self) -> int:
        return len(self._failures)


def is_poison(error: Exception) -> bool:
    """
    True for failures caused by the message itself: unparseable bodies and
    documents the store refused. Lost connections, deadlines and other
    transient store failures say nothing about the message.
    """
    if isinstance(error, PipelineError) and error.context.get("write_rejected"):
        return True
    return classify_exception(error) == ErrorCategory.PERMANENT


class RedeliveryPolicy:
    """
    Decides between Retry and DeadLetter after a failed delivery.

    max_deliveries = 0 retries forever. Otherwise a message is dead-lettered
    once it has failed max_deliveries deliveries with a poison error (see
    is_poison). Transient failures are always retried and not counted, so a
    store outage never moves valid events to the dead-letter queue.
    """

    def __init__(self, max_deliveries: int = 0, tracker: DeliveryTracker | None = None):
        self.max_deliveries = max_deliveries
        self.tracker = tracker or DeliveryTracker()

    @property
    def bounded(self) -> bool:
        return self.max_deliveries > 0

    def decide(self, message: DeliveredMessage, error: Exception) -> RedeliveryDecision:
        if not is_poison(error):
            return Retry(message.delivery_count or self.tracker.failures(message.fingerprint))

        tracked = self.tracker.record_failure(message.fingerprint)
        delivery_count = message.delivery_count or tracked
        if self.bounded and delivery_count >= self.max_deliveries:
            return DeadLetter(delivery_count)
        return Retry(delivery_count)

    def record_success(self, message: DeliveredMessage) -> None:
        self.tracker.forget(message.fingerprint)


# =============================================================================
# Dead-letter publishing
# =============================================================================


class DeadLetterPublisher:
    """Publishes failed deliveries to the dead-letter queue with error context."""

    def __init__(
        self,
        broker: BrokerClient,
        dead_letter_queue: str,
        worker_id: str = "",
        publish_timeout: float = 10.0,
    ):
        self.broker = broker
        self.dead_letter_queue = dead_letter_queue
        self.worker_id = worker_id
        self.publish_timeout = publish_timeout

    def build_envelope(
        self, message: DeliveredMessage, error: Exception, delivery_count: int
    ) -> dict:
        category = error.category if isinstance(error, PipelineError) else classify_exception(error)
        return {
            "original_queue": message.queue,
            "original_message_id": message.message_id,
            "original_delivery_tag": message.delivery_tag,
            "original_headers": message.headers,
            "original_body": message.body.decode("utf-8", errors="replace"),
            "delivery_count": delivery_count,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "error_category": category.value,
            "worker_id": self.worker_id,
            "dlq_timestamp": time.time(),
        }

    @with_retry_async(config=DLQ_PUBLISH_RETRY)
    async def _publish(self, body: bytes, headers: dict, message_id: str | None) -> None:
        await self.broker.publish_to_queue(
            self.dead_letter_queue,
            body,
            headers=headers,
            message_id=message_id,
            ready_timeout=self.publish_timeout,
        )

    async def send(self, message: DeliveredMessage, error: Exception, delivery_count: int) -> None:
        """
        Publish the envelope to the dead-letter queue.

        Raises:
            PipelineError: If the publish fails; the caller must not ack
        """
        envelope = self.build_envelope(message, error, delivery_count)
        headers = {
            "dlq_source_queue": message.queue,
            "dlq_error_type": type(error).__name__,
            "dlq_delivery_count": delivery_count,
        }

        try:
            await self._publish(
                json.dumps(envelope, default=json_serializer).encode("utf-8"),
                headers,
                message.message_id,
            )
        except Exception:
            logger.error(
                "Failed to send message to DLQ - message will be retried",
                extra={
                    "dlq_queue": self.dead_letter_queue,
                    "queue": message.queue,
                    "delivery_count": delivery_count,
                    "error_type": type(error).__name__,
                },
                exc_info=True,
            )
            raise

        logger.warning(
            "Message sent to DLQ",
            extra={
                "dlq_queue": self.dead_letter_queue,
                "queue": message.queue,
                "delivery_count": delivery_count,
                "error_type": type(error).__name__,
                "error_message": str(error)[:200],
            },
        )
        record_dead_letter(message.queue, type(error).__name__)


__all__ = [
    "DeadLetter",
    "DeadLetterPublisher",
    "DeliveryTracker",
    "RedeliveryDecision",
    "RedeliveryPolicy",
    "Retry",
    "is_poison",
]
