"""Log formatters: one JSON object per line for files, colored text for terminals."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, Callable

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer

# user:password@ in amqp:// and mongodb:// URLs
CREDENTIALS_PATTERN = re.compile(r"(://[^:/@]+):[^@/]*@")


def redact_credentials(url: str) -> str:
    return CREDENTIALS_PATTERN.sub(r"\1:[REDACTED]@", url)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for the relay's file logs.

    Each line carries the worker context (stage, worker_id, instance_id),
    the delivery being processed when there is one, and the whitelisted
    extras below. Numeric extras are coerced so counts never turn into
    strings; URL extras have their password replaced.
    """

    CONTEXT_FIELDS = ("stage", "cycle_id", "worker_id", "instance_id")

    # extra field -> converter applied before output (None keeps the value)
    FIELDS: dict[str, Callable[[Any], Any] | None] = {
        # errors
        "error": None,
        "error_type": None,
        "error_category": None,
        "error_message": None,
        # deliveries
        "resolution": None,
        "delivery_count": int,
        "max_deliveries": int,
        "processing_time_ms": float,
        "processing_timeout_seconds": float,
        "duration_ms": float,
        "records_processed": int,
        "records_succeeded": int,
        "records_failed": int,
        "records_requeued": int,
        "records_dead_lettered": int,
        # connections
        "component": None,
        "connection_state": None,
        "attempt": int,
        "max_attempts": int,
        "delay_seconds": float,
        "broker_url": redact_credentials,
        "store_uri": redact_credentials,
        # broker
        "exchange": None,
        "queue": None,
        "dlq_queue": None,
        "prefetch_count": int,
        # store
        "database": None,
        "collection": None,
        "table": None,
        "event_type": None,
        "inserted_id": None,
        "index_name": None,
        # traffic generator / tailer / health
        "operations": int,
        "batch_size": int,
        "changes_found": int,
        "polls": int,
        "interval_seconds": float,
        "health_port": None,
    }

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_context = get_log_context()
        entry.update({key: log_context[key] for key in self.CONTEXT_FIELDS if log_context.get(key)})

        message_context = get_message_context()
        if message_context.get("message_queue"):
            entry.update(message_context)

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field, convert in self.FIELDS.items():
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = self._convert(value, convert)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)

    @staticmethod
    def _convert(value: Any, convert: Callable[[Any], Any] | None) -> Any:
        """Apply a field converter; an unconvertible value becomes None."""
        if convert is None:
            return value
        if convert is redact_credentials:
            return redact_credentials(value) if isinstance(value, str) else value
        try:
            return convert(value)
        except (ValueError, TypeError):
            return None


class ConsoleFormatter(logging.Formatter):
    """
    `2024-01-01 12:00:00 - INFO - [consumer] - [2] - [tag:7] message`

    Level names are colored only when stdout is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        color = self.LEVEL_COLORS.get(record.levelno)
        if self._use_colors and color:
            level = f"{color}{level}{self.RESET}"

        log_context = get_log_context()
        parts = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), level]
        for key in ("stage", "instance_id"):
            if log_context.get(key):
                parts.append(f"[{log_context[key]}]")

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        tags = self._delivery_tags()
        if tags:
            message = f"{' '.join(tags)} {message}"

        parts.append(message)
        return " - ".join(parts)

    @staticmethod
    def _delivery_tags() -> list[str]:
        message_context = get_message_context()
        if not message_context.get("message_queue"):
            return []
        tags = []
        delivery_tag = message_context.get("message_delivery_tag", -1)
        if delivery_tag is not None and delivery_tag >= 0:
            tags.append(f"[tag:{delivery_tag}]")
        if message_context.get("message_redelivered"):
            tags.append("[redelivered]")
        return tags
