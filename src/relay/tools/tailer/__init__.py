"""Live view of ingested change events."""

from relay.tools.tailer.formatting import format_change
from relay.tools.tailer.tailer import ChangeTailer

__all__ = ["ChangeTailer", "format_change"]
