"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the relay so that broker and store errors are classified
consistently.
"""

from enum import Enum
from typing import Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should be retried
                   (e.g., broker connection dropped, store unreachable)
        PERMANENT: Failures that will not succeed on retry
                   (e.g., malformed message body)
        UNKNOWN: Unclassified errors, retried conservatively
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    The broker and store modules implement this protocol to map
    driver-specific exceptions into standard categories.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        """
        Classify an exception into an error category.

        Args:
            error: Exception to classify

        Returns:
            ErrorCategory indicating how to handle this error
        """
        ...

    def is_transient(self, error: Exception) -> bool:
        """
        Check if error is transient (retriable).

        Args:
            error: Exception to check

        Returns:
            True if error may succeed on retry
        """
        ...


__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
