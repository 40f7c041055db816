"""Broker delivery context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_queue: ContextVar[str] = ContextVar("message_queue", default="")
_message_delivery_tag: ContextVar[int] = ContextVar("message_delivery_tag", default=-1)
_message_redelivered: ContextVar[bool] = ContextVar("message_redelivered", default=False)
_message_id: ContextVar[str] = ContextVar("message_id", default="")


def set_message_context(
    queue: Optional[str] = None,
    delivery_tag: Optional[int] = None,
    redelivered: Optional[bool] = None,
    message_id: Optional[str] = None,
) -> None:
    """
    Set delivery context variables for structured logging.

    Args:
        queue: Queue the message was consumed from
        delivery_tag: Channel-scoped delivery tag
        redelivered: Broker redelivery flag
        message_id: AMQP message id (if the producer set one)
    """
    if queue is not None:
        _message_queue.set(queue)
    if delivery_tag is not None:
        _message_delivery_tag.set(delivery_tag)
    if redelivered is not None:
        _message_redelivered.set(redelivered)
    if message_id is not None:
        _message_id.set(message_id)


def get_message_context() -> Dict[str, Any]:
    """
    Get current delivery logging context.

    Returns:
        Dictionary with queue, delivery tag, redelivered flag and message id
    """
    context: Dict[str, Any] = {
        "message_queue": _message_queue.get(),
        "message_delivery_tag": _message_delivery_tag.get(),
        "message_redelivered": _message_redelivered.get(),
    }

    message_id = _message_id.get()
    if message_id:
        context["message_id"] = message_id

    return context


def clear_message_context() -> None:
    """Clear all delivery logging context variables."""
    _message_queue.set("")
    _message_delivery_tag.set(-1)
    _message_redelivered.set(False)
    _message_id.set("")


class MessageLogContext:
    """
    Context manager for message processing with automatic context setting.

    Usage:
        with MessageLogContext(queue="maxwell_consumer", delivery_tag=42):
            # All logs in this block will include delivery context
            process_message()
    """

    def __init__(
        self,
        queue: Optional[str] = None,
        delivery_tag: Optional[int] = None,
        redelivered: Optional[bool] = None,
        message_id: Optional[str] = None,
    ):
        self.new_context = {
            "queue": queue,
            "delivery_tag": delivery_tag,
            "redelivered": redelivered,
            "message_id": message_id,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "MessageLogContext":
        self.old_context = {
            "queue": _message_queue.get(),
            "delivery_tag": _message_delivery_tag.get(),
            "redelivered": _message_redelivered.get(),
            "message_id": _message_id.get(),
        }

        for key, value in self.new_context.items():
            if value is not None:
                set_message_context(**{key: value})

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_message_context(**self.old_context)
        return False
