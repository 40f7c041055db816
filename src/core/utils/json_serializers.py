"""json.dumps fallback for values that come out of MongoDB and AMQP messages."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from bson import ObjectId

# Checked in order; datetime before date since it subclasses it
_CONVERTERS: list[tuple[type | tuple[type, ...], Callable[[Any], Any]]] = [
    ((datetime, date), lambda value: value.isoformat()),
    (Decimal, float),
    (ObjectId, str),
    ((bytes, bytearray, memoryview), lambda value: bytes(value).decode("utf-8", errors="replace")),
    (Enum, lambda value: value.value),
    (Path, str),
]


def json_serializer(obj: Any) -> Any:
    """
    Fallback for json.dumps(default=...) in log lines, dead-letter
    envelopes, published events and tailer output.

    Stored documents carry ObjectId and sometimes Decimal128-derived
    Decimal values; message bodies arrive as bytes. Numbers stay numbers,
    everything without a known conversion becomes its __dict__ or str().
    """
    for types, convert in _CONVERTERS:
        if isinstance(obj, types):
            return convert(obj)
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


__all__ = ["json_serializer"]
