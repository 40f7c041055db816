"""
Tests for retry configuration and the async retry decorator.
"""

from unittest.mock import AsyncMock

import pytest

from core.errors.exceptions import (
    BrokerConnectionError,
    ParseError,
    PipelineError,
    TransientError,
)
from core.resilience.retry import (
    DEFAULT_RETRY,
    RECONNECT_RETRY,
    RetryConfig,
    fixed_interval,
    with_retry_async,
)


def instant(max_attempts: int = 3, **kwargs) -> RetryConfig:
    """Retry config that never actually sleeps."""
    return RetryConfig(max_attempts=max_attempts, base_delay=0.0, jitter=False, **kwargs)


class TestRetryConfig:
    def test_default_values(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.jitter is True
        assert config.unbounded is False

    def test_coerces_string_values(self):
        config = RetryConfig(max_attempts="5", base_delay="0.5", jitter="false")
        assert config.max_attempts == 5
        assert config.base_delay == 0.5
        assert config.jitter is False

    def test_exponential_delay_without_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=False)
        assert [config.get_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_jitter_stays_within_half_to_full_delay(self):
        config = RetryConfig(base_delay=4.0, max_delay=4.0, jitter=True)
        for attempt in range(20):
            assert 2.0 <= config.get_delay(attempt) <= 4.0

    def test_defaults_module_level(self):
        assert DEFAULT_RETRY.max_attempts == 3
        assert RECONNECT_RETRY.unbounded
        assert RECONNECT_RETRY.get_delay(10) == 5.0


class TestFixedInterval:
    def test_same_delay_every_attempt(self):
        config = fixed_interval(2.5)
        assert {config.get_delay(n) for n in range(10)} == {2.5}

    def test_unbounded_and_retries_permanent(self):
        config = fixed_interval(1.0)
        assert config.unbounded
        assert config.should_retry(ParseError("bad"), attempt=1000)


class TestShouldRetry:
    def test_transient_retried_until_exhausted(self):
        config = RetryConfig(max_attempts=3)
        error = BrokerConnectionError("down")
        assert config.should_retry(error, 0)
        assert config.should_retry(error, 1)
        assert not config.should_retry(error, 2)

    def test_permanent_not_retried(self):
        assert not RetryConfig().should_retry(ParseError("bad json"), 0)

    def test_permanent_retried_when_not_respected(self):
        config = RetryConfig(respect_permanent=False)
        assert config.should_retry(ParseError("bad json"), 0)

    @pytest.mark.parametrize(
        "error,expected",
        [
            (OSError("connection refused"), True),
            (RuntimeError("something odd"), True),
            (UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid"), False),
        ],
    )
    def test_generic_exceptions_classified(self, error, expected):
        assert RetryConfig().should_retry(error, 0) is expected


class TestWithRetryAsync:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        func = AsyncMock(return_value="ok")
        decorated = with_retry_async(config=instant())(func)

        assert await decorated("a", key="b") == "ok"
        func.assert_awaited_once_with("a", key="b")

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        func = AsyncMock(side_effect=[BrokerConnectionError("down"), "ok"])
        retries = []
        decorated = with_retry_async(
            config=instant(),
            on_retry=lambda error, attempt, delay: retries.append((type(error), attempt)),
        )(func)

        assert await decorated() == "ok"
        assert func.await_count == 2
        assert retries == [(BrokerConnectionError, 0)]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        func = AsyncMock(side_effect=BrokerConnectionError("down"))
        decorated = with_retry_async(config=instant(max_attempts=3))(func)

        with pytest.raises(BrokerConnectionError):
            await decorated()
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_fails_immediately(self):
        func = AsyncMock(side_effect=ParseError("bad"))
        decorated = with_retry_async(config=instant(max_attempts=5))(func)

        with pytest.raises(ParseError):
            await decorated()
        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generic_error_wrapped(self):
        func = AsyncMock(side_effect=OSError("connection reset"))
        decorated = with_retry_async(config=instant(max_attempts=2))(func)

        with pytest.raises(TransientError) as exc_info:
            await decorated()
        assert isinstance(exc_info.value.cause, OSError)
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_generic_error_not_wrapped(self):
        func = AsyncMock(side_effect=RuntimeError("boom"))
        decorated = with_retry_async(config=instant(max_attempts=2), wrap_errors=False)(func)

        with pytest.raises(RuntimeError):
            await decorated()

    @pytest.mark.asyncio
    async def test_preserves_function_name(self):
        @with_retry_async(config=instant())
        async def publish_event():
            return 1

        assert publish_event.__name__ == "publish_event"
        assert not isinstance(await publish_event(), PipelineError)
