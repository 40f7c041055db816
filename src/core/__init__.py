"""
Core library: reusable, transport-agnostic components.

Modules:
    resilience  - Retry with backoff, supervised reconnecting resources
    logging     - Structured JSON logging with per-message context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization and worker ids

Classifiers work on exception type names, so nothing here imports the
broker or store drivers beyond bson for ObjectId serialization.
"""

from .types import ErrorCategory, ErrorClassifier

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
