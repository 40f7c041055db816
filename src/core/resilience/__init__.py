"""
Resilience patterns module.

Components:
    - RetryConfig: Fixed or exponential backoff configuration
    - @with_retry_async decorator: Retry with jitter
    - ReconnectingResource: Supervised connect/validate/ready/discard cycle
"""

from .reconnect import ConnectionState, ReconnectingResource
from .retry import (
    DEFAULT_RETRY,
    RECONNECT_RETRY,
    RetryConfig,
    fixed_interval,
    with_retry_async,
)

__all__ = [
    # Reconnect
    "ConnectionState",
    "ReconnectingResource",
    # Retry
    "RetryConfig",
    "fixed_interval",
    "with_retry_async",
    "DEFAULT_RETRY",
    "RECONNECT_RETRY",
]
