"""
Error classification for broker and document store operations.

Maps aio-pika/aiormq and pymongo exceptions onto the PipelineError
hierarchy. Classification is by exception type name so this module does not
import either driver.
"""

import json

from core.errors.exceptions import (
    BrokerConnectionError,
    ParseError,
    PermanentError,
    PersistError,
    PipelineError,
    StoreConnectionError,
    TimeoutError,
    classify_exception,
)
from core.types import ErrorCategory

# aio-pika / aiormq exception names
BROKER_ERROR_MAPPINGS = {
    "connection": [
        "AMQPConnectionError",
        "ConnectionClosed",
        "ChannelClosed",
        "ChannelInvalidStateError",
        "ChannelNotFoundEntity",
        "ProbableAuthenticationError",
        "ProbableAuthenticationOrAuthorizationError",
        "AuthenticationError",
        "IncompatibleProtocolError",
        "ConnectionChannelError",
        "ConnectionForced",
        "ConnectionRefusedError",
        "ConnectionResetError",
        "ConnectionAbortedError",
        "gaierror",
    ],
    "timeout": [
        "TimeoutError",
        "CancelledError",
    ],
    "permanent": [
        "ChannelAccessRefused",
        "ChannelPreconditionFailed",
        "MessageProcessError",
        "DuplicateConsumerTag",
        "PublishError",
    ],
}

# pymongo exception names
STORE_ERROR_MAPPINGS = {
    # Lost or never-established connection: discard the client and reconnect
    "connection": [
        "ConnectionFailure",
        "AutoReconnect",
        "NetworkTimeout",
        "ServerSelectionTimeoutError",
        "NotPrimaryError",
        "WaitQueueTimeoutError",
    ],
    "timeout": [
        "ExecutionTimeout",
        "WTimeoutError",
        "TimeoutError",
    ],
    # Server refused this document; the same insert fails on every redelivery
    "rejected": [
        "WriteError",
        "DuplicateKeyError",
        "BulkWriteError",
        "DocumentTooLarge",
        "InvalidDocument",
    ],
    # Server reachable but the write did not complete
    "write": [
        "WriteConcernError",
        "OperationFailure",
    ],
}


def _lookup(mappings: dict, error: Exception) -> str | None:
    error_type_name = type(error).__name__
    for category, error_types in mappings.items():
        if error_type_name in error_types:
            return category
    return None


class BrokerErrorClassifier:
    """
    Classifies message broker errors.

    Every broker failure that is not a topology or permission problem is
    treated as a lost connection; the broker client reconnects on those.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        category = _lookup(BROKER_ERROR_MAPPINGS, error)
        if category in ("connection", "timeout"):
            return ErrorCategory.TRANSIENT
        if category == "permanent":
            return ErrorCategory.PERMANENT
        return classify_exception(error)

    def is_transient(self, error: Exception) -> bool:
        return self.classify_error(error) != ErrorCategory.PERMANENT

    @staticmethod
    def classify_connection_error(
        error: Exception, context: dict | None = None
    ) -> PipelineError:
        """
        Wrap a failure raised while connecting or declaring topology.

        Args:
            error: Original exception from aio-pika
            context: Additional context (merged with {"service": "broker"})

        Returns:
            Classified PipelineError subclass
        """
        if isinstance(error, PipelineError):
            return error

        error_context = {"service": "broker", "error_type": type(error).__name__}
        if context:
            error_context.update(context)

        category = _lookup(BROKER_ERROR_MAPPINGS, error)
        if category == "permanent":
            return PermanentError(
                f"Broker rejected topology or operation: {error}",
                cause=error,
                context=error_context,
            )
        return BrokerConnectionError(
            f"Broker connection error: {error}", cause=error, context=error_context
        )


class StoreErrorClassifier:
    """
    Classifies document store errors.

    Distinguishes connection-class failures, after which the client is
    discarded, from write rejections where the connection stays usable.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        if isinstance(error, PipelineError):
            return error.category
        if _lookup(STORE_ERROR_MAPPINGS, error) is not None:
            return ErrorCategory.TRANSIENT
        return classify_exception(error)

    def is_transient(self, error: Exception) -> bool:
        return self.classify_error(error) != ErrorCategory.PERMANENT

    @staticmethod
    def is_connection_error(error: Exception) -> bool:
        """True when the store client should be discarded and recreated."""
        if isinstance(error, StoreConnectionError):
            return True
        return _lookup(STORE_ERROR_MAPPINGS, error) == "connection"

    @staticmethod
    def classify_connection_error(
        error: Exception, context: dict | None = None
    ) -> PipelineError:
        """Wrap a failure raised while connecting, pinging or creating indexes."""
        if isinstance(error, PipelineError):
            return error

        error_context = {"service": "store", "error_type": type(error).__name__}
        if context:
            error_context.update(context)
        return StoreConnectionError(
            f"Store connection error: {error}", cause=error, context=error_context
        )

    @staticmethod
    def classify_write_error(
        error: Exception, context: dict | None = None
    ) -> PipelineError:
        """
        Wrap a failed insert.

        Every insert failure surfaces as PersistError. The context records
        whether the connection was lost and whether the server rejected the
        document itself (write_rejected), which redelivery cannot fix.

        Args:
            error: Original exception from pymongo
            context: Additional context (merged with {"service": "store"})

        Returns:
            PersistError (or TimeoutError for deadline expiry)
        """
        if isinstance(error, PersistError):
            return error

        error_context = {"service": "store", "error_type": type(error).__name__}
        if context:
            error_context.update(context)

        category = _lookup(STORE_ERROR_MAPPINGS, error)
        error_context["connection_lost"] = category == "connection"
        error_context["write_rejected"] = category == "rejected"

        if isinstance(error, TimeoutError):
            return PersistError(
                f"Store insert timed out: {error}", cause=error, context=error_context
            )
        if category == "rejected":
            return PersistError(
                f"Store rejected insert: {error}", cause=error, context=error_context
            )
        return PersistError(
            f"Store insert failed: {error}", cause=error, context=error_context
        )


def classify_parse_error(error: Exception, context: dict | None = None) -> ParseError:
    """Wrap a JSON decoding failure as ParseError."""
    if isinstance(error, ParseError):
        return error
    error_context = {"error_type": type(error).__name__}
    if context:
        error_context.update(context)
    if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError)):
        return ParseError(
            f"Message deserialization failed: {error}",
            cause=error,
            context=error_context,
        )
    return ParseError(f"Invalid message body: {error}", cause=error, context=error_context)


__all__ = [
    "BROKER_ERROR_MAPPINGS",
    "STORE_ERROR_MAPPINGS",
    "BrokerErrorClassifier",
    "StoreErrorClassifier",
    "classify_parse_error",
]
