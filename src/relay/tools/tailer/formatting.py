"""Human-readable rendering of stored change documents."""

import json
from datetime import UTC, datetime
from typing import Any

from core.utils.json_serializers import json_serializer
from relay.schemas.events import ChangeEvent, ChangeType, change_event_from_document

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(event: ChangeEvent) -> str:
    """Producer ts as UTC "YYYY-MM-DD HH:MM:SS" (epoch when absent)."""
    seconds = event.event_time_seconds() or 0.0
    try:
        return datetime.fromtimestamp(seconds, tz=UTC).strftime(TIMESTAMP_FORMAT)
    except (OverflowError, OSError, ValueError):
        return str(event.ts)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=json_serializer, separators=(",", ":"))


def format_change(document: dict[str, Any]) -> list[str]:
    """
    Render one stored change as output lines.

    Examples:
        INSERT into shop.users at 2024-01-01 12:00:00: {"id":1}
        UPDATE in shop.users at 2024-01-01 12:00:00:
          New data: {"id":1,"name":"b"}
          Old data: {"name":"a"}
        DELETE from shop.users at 2024-01-01 12:00:00: {"id":1}
        Unknown operation table-create on shop.users at ...: {...whole document...}
    """
    event = change_event_from_document(document)
    source = event.source
    timestamp = format_timestamp(event)
    change_type = event.change_type

    if change_type == ChangeType.INSERT:
        return [f"INSERT into {source} at {timestamp}: {_dumps(event.data or {})}"]
    if change_type == ChangeType.UPDATE:
        return [
            f"UPDATE in {source} at {timestamp}:",
            f"  New data: {_dumps(event.data or {})}",
            f"  Old data: {_dumps(event.old or {})}",
        ]
    if change_type == ChangeType.DELETE:
        return [f"DELETE from {source} at {timestamp}: {_dumps(event.data or {})}"]

    operation = event.type or "unknown"
    return [f"Unknown operation {operation} on {source} at {timestamp}: {_dumps(document)}"]


__all__ = ["format_change", "format_timestamp"]
