"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
- Broker and store error classifiers
"""

from core.errors.classifiers import (
    BrokerErrorClassifier,
    StoreErrorClassifier,
    classify_parse_error,
)
from core.errors.exceptions import (
    BrokerConnectionError,
    ConnectionError,
    ErrorCategory,
    MessageAlreadyResolvedError,
    ParseError,
    PermanentError,
    PersistError,
    PipelineError,
    ShutdownError,
    StoreConnectionError,
    TimeoutError,
    TransientError,
    classify_exception,
    is_retryable_error,
    is_transient_error,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    # Transient errors
    "ConnectionError",
    "BrokerConnectionError",
    "StoreConnectionError",
    "TimeoutError",
    "PersistError",
    # Permanent errors
    "ParseError",
    "ShutdownError",
    "MessageAlreadyResolvedError",
    # Classification utilities
    "is_transient_error",
    "is_retryable_error",
    "classify_exception",
    "wrap_exception",
    # Classifiers
    "BrokerErrorClassifier",
    "StoreErrorClassifier",
    "classify_parse_error",
]
