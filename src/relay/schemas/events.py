"""
Change event schema for Maxwell binlog messages.

Every JSON object is a valid ChangeEvent: fields are typed Any so nothing the
producer sends is rejected or coerced, and unknown fields are carried through
untouched. The only value the relay adds is received_at.
"""

import json
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.errors.classifiers import classify_parse_error
from core.errors.exceptions import ParseError

RECEIVED_AT_FIELD = "received_at"
UNKNOWN = "unknown"

# Producer ts values above this are milliseconds, below are seconds
MILLISECONDS_THRESHOLD = 10**11


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    OTHER = "other"

    @classmethod
    def classify(cls, value: Any) -> "ChangeType":
        """Map a raw `type` value to a ChangeType; anything unrecognised is OTHER."""
        if isinstance(value, str):
            try:
                change_type = cls(value.lower())
            except ValueError:
                return cls.OTHER
            return change_type
        return cls.OTHER


class ChangeEvent(BaseModel):
    """Row-level change emitted by the binlog capture tool.

    Maxwell message fields:
        database: Source database name
        table: Source table name
        type: insert, update, delete (others are classified as OTHER)
        ts: Event time (Maxwell emits seconds, some producers milliseconds)
        data: Column -> current value
        old: Column -> prior value (update only)
        xid, commit, position, ...: carried through as extra fields

    Example:
        >>> event = parse_change_event(b'{"database": "shop", "table": "users", "type": "insert"}')
        >>> event.change_type
        <ChangeType.INSERT: 'insert'>
        >>> sorted(event.to_document())
        ['database', 'received_at', 'table', 'type']
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    database: Any = Field(default=None, description="Source database identifier")
    table: Any = Field(default=None, description="Source table identifier")
    type: Any = Field(default=None, description="Change kind as sent by the producer")
    ts: Any = Field(default=None, description="Producer event time")
    data: Any = Field(default=None, description="Column values after the change")
    old: Any = Field(default=None, description="Prior column values (update only)")
    received_at: Any = Field(
        default=None,
        description="Relay ingestion time, float seconds since epoch",
    )

    @property
    def change_type(self) -> ChangeType:
        return ChangeType.classify(self.type)

    @property
    def source_database(self) -> str:
        return str(self.database) if self.database else UNKNOWN

    @property
    def source_table(self) -> str:
        return str(self.table) if self.table else UNKNOWN

    @property
    def source(self) -> str:
        """"database.table" for display, with unknown for missing parts."""
        return f"{self.source_database}.{self.source_table}"

    def event_time_seconds(self) -> Optional[float]:
        """Producer ts normalised to seconds, or None if absent or non-numeric."""
        if isinstance(self.ts, bool) or not isinstance(self.ts, (int, float)):
            return None
        if self.ts > MILLISECONDS_THRESHOLD:
            return self.ts / 1000
        return float(self.ts)

    def to_document(self) -> Dict[str, Any]:
        """The stored document: exactly the parsed message plus received_at."""
        document = self.model_dump(exclude_unset=True)
        if self.received_at is not None:
            document[RECEIVED_AT_FIELD] = self.received_at
        return document


def parse_change_event(body: bytes | str, received_at: Optional[float] = None) -> ChangeEvent:
    """
    Parse a broker message body into a ChangeEvent and stamp received_at.

    A received_at sent by the producer is replaced; only the relay sets it.

    Args:
        body: Raw message body (UTF-8 JSON)
        received_at: Ingestion time to stamp (default: now)

    Raises:
        ParseError: If the body is not valid JSON or not a JSON object
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise classify_parse_error(e) from e

    if not isinstance(payload, dict):
        raise ParseError(
            f"Message body must be a JSON object, got {type(payload).__name__}",
            context={"error_type": "not_an_object"},
        )

    payload[RECEIVED_AT_FIELD] = time.time() if received_at is None else received_at

    return ChangeEvent.model_validate(payload)


def change_event_from_document(document: Dict[str, Any]) -> ChangeEvent:
    """Rebuild a ChangeEvent from a stored document (the store's _id is dropped)."""
    return ChangeEvent.model_validate(
        {key: value for key, value in document.items() if key != "_id"}
    )


__all__ = [
    "ChangeEvent",
    "ChangeType",
    "RECEIVED_AT_FIELD",
    "parse_change_event",
    "change_event_from_document",
]
