"""Message schemas for the binlog relay."""

from relay.schemas.events import (
    ChangeEvent,
    ChangeType,
    change_event_from_document,
    parse_change_event,
)

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "change_event_from_document",
    "parse_change_event",
]
