"""
Retry policies for relay I/O.

Two shapes are in use:

    fixed_interval(5.0)            broker and store reconnects: forever, every 5s
    RetryConfig(max_attempts=3)    short operations such as dead-letter publishes:
                                   exponential backoff with equal jitter

Permanent errors (ErrorCategory.PERMANENT) are not retried unless the
policy sets respect_permanent=False, as the reconnect policies do.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps

from core.errors.exceptions import classify_exception, wrap_exception
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

_TRUE_STRINGS = ("1", "true", "yes")


def _as_bool(value) -> bool:
    # Values from YAML/env may arrive as "false"
    return value if isinstance(value, bool) else str(value).lower() in _TRUE_STRINGS


@dataclass
class RetryConfig:
    """
    Attributes:
        max_attempts: Total attempts including the first; 0 retries forever
        base_delay: Delay after the first failure, in seconds
        max_delay: Cap on any single delay
        exponential_base: Growth per attempt; 1.0 keeps the delay fixed
        jitter: Randomize each delay between half and all of it
        respect_permanent: Stop immediately on permanent errors
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    respect_permanent: bool = True

    def __post_init__(self):
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        self.jitter = _as_bool(self.jitter)
        self.respect_permanent = _as_bool(self.respect_permanent)

    @property
    def unbounded(self) -> bool:
        return self.max_attempts <= 0

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait after the 0-indexed `attempt` failed."""
        delay = min(self.base_delay * self.exponential_base**attempt, self.max_delay)
        if self.jitter:
            delay = delay / 2 + random.uniform(0, delay / 2)
        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Whether another attempt follows the 0-indexed `attempt` that raised `error`."""
        if not self.unbounded and attempt + 1 >= self.max_attempts:
            return False
        if not self.respect_permanent:
            return True
        return classify_exception(error) != ErrorCategory.PERMANENT


def fixed_interval(delay_seconds: float) -> RetryConfig:
    """Retry forever, every `delay_seconds`, whatever the error."""
    return RetryConfig(
        max_attempts=0,
        base_delay=delay_seconds,
        max_delay=delay_seconds,
        exponential_base=1.0,
        jitter=False,
        respect_permanent=False,
    )


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)
RECONNECT_RETRY = fixed_interval(5.0)


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    wrap_errors: bool = True,
):
    """
    Retry an async function according to `config` (default DEFAULT_RETRY).

    With wrap_errors, exceptions outside the PipelineError tree are wrapped
    by wrap_exception before the retry decision, and the wrapped error is
    what finally propagates. on_retry(error, attempt, delay) runs before
    each sleep.

        @with_retry_async(config=RetryConfig(max_attempts=5))
        async def publish():
            ...
    """
    config = config or DEFAULT_RETRY

    def decorator(func: Callable):
        name = func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    error = wrap_exception(e) if wrap_errors else e
                    summary = str(e)[:200]

                    if not config.should_retry(error, attempt):
                        logger.warning(
                            f"Giving up on {name} after {attempt + 1} attempts: {summary}",
                            extra={
                                "attempt": attempt + 1,
                                "max_attempts": config.max_attempts,
                                "error_type": type(e).__name__,
                            },
                        )
                        if error is e:
                            raise
                        raise error from e

                    delay = config.get_delay(attempt)
                    logger.warning(
                        f"Retryable error for {name}, retrying in {delay:.2f}s",
                        extra={
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "delay_seconds": round(delay, 2),
                            "error_message": summary,
                        },
                    )
                    if on_retry:
                        on_retry(error, attempt, delay)
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt:
                    logger.info(
                        f"Retry succeeded for {name} after {attempt + 1} attempts",
                        extra={"attempt": attempt + 1},
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY",
    "RECONNECT_RETRY",
    "fixed_interval",
    "with_retry_async",
]
