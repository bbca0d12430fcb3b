"""
Property-based tests for the Retry Manager module.

Uses Hypothesis with a fake sleep and a fixed random source, so the backoff
schedule can be checked exactly without waiting.
"""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from magpie.config import RetryConfig
from magpie.retry_manager import RetryManager, RetryResult


# Strategies for generating test data

@st.composite
def retry_config_strategy(draw) -> RetryConfig:
    """Generate valid RetryConfig objects."""
    return RetryConfig(
        attempts=draw(st.integers(min_value=1, max_value=6)),
        base_delay_seconds=draw(st.floats(min_value=0.01, max_value=2.0)),
        max_delay_seconds=draw(st.floats(min_value=2.0, max_value=30.0)),
        jitter_ratio=0.5,
    )


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestBackoffScheduleProperty:
    """The wait after attempt n is base * 2**(n-1) plus jitter, capped."""

    @given(config=retry_config_strategy())
    @settings(max_examples=100)
    def test_delay_without_jitter(self, config: RetryConfig) -> None:
        """
        Property: with zero jitter, delays follow the exponential formula.

        *For any* configuration, the delay after failed attempt ``n`` equals
        ``min(base * 2**(n-1), max_delay)``.
        """
        manager = RetryManager(config, rand=lambda: 0.0)

        for attempt in range(1, 8):
            expected = min(
                config.base_delay_seconds * 2 ** (attempt - 1),
                config.max_delay_seconds,
            )
            assert abs(manager._calculate_delay(attempt) - expected) < 1e-9

    @given(
        config=retry_config_strategy(),
        rand_value=st.floats(min_value=0.0, max_value=0.999),
    )
    @settings(max_examples=100)
    def test_jitter_bounds(self, config: RetryConfig, rand_value: float) -> None:
        """
        Property: jitter adds at most half the backoff and never breaks the cap.
        """
        manager = RetryManager(config, rand=lambda: rand_value)

        for attempt in range(1, 8):
            backoff = config.base_delay_seconds * 2 ** (attempt - 1)
            delay = manager._calculate_delay(attempt)
            assert delay <= config.max_delay_seconds
            assert delay >= min(backoff, config.max_delay_seconds)
            assert delay <= backoff * 1.5 + 1e-9


class TestAttemptCountProperty:
    """An always-failing operation is tried exactly ``attempts`` times."""

    @given(config=retry_config_strategy())
    @settings(max_examples=100, deadline=None)
    def test_exactly_n_attempts(self, config: RetryConfig) -> None:
        """
        Property: N configured attempts means N calls and N-1 sleeps.

        *For any* configuration, an operation that always raises is invoked
        exactly ``attempts`` times, the sleeps match the backoff schedule and
        no sleep follows the final attempt.
        """
        sleep = FakeSleep()
        manager = RetryManager(config, sleep=sleep, rand=lambda: 0.0)
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise ConnectionError("connection refused")

        result = asyncio.run(manager.execute_with_retry(operation))

        assert not result.success
        assert result.attempts == config.attempts
        assert calls == config.attempts
        assert isinstance(result.last_error, ConnectionError)
        assert len(sleep.delays) == config.attempts - 1
        expected = [manager._calculate_delay(n) for n in range(1, config.attempts)]
        assert sleep.delays == expected
        assert abs(result.total_delay - sum(expected)) < 1e-9

    @given(
        failures=st.integers(min_value=0, max_value=4),
    )
    @settings(max_examples=50, deadline=None)
    def test_success_after_transient_failures(self, failures: int) -> None:
        """Property: success on attempt k reports k attempts and the result."""
        sleep = FakeSleep()
        manager = RetryManager(RetryConfig(attempts=5), sleep=sleep, rand=lambda: 0.0)
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            if calls <= failures:
                raise TimeoutError("slow source")
            return "ok"

        result: RetryResult[str] = asyncio.run(manager.execute_with_retry(operation))

        assert result.success
        assert result.result == "ok"
        assert result.attempts == failures + 1
        assert len(sleep.delays) == failures


class TestRetryEdgeCases:
    """Permanent errors, cancellation and degenerate configs."""

    def test_permanent_errors_are_retried_too(self) -> None:
        sleep = FakeSleep()
        manager = RetryManager(RetryConfig(attempts=3), sleep=sleep, rand=lambda: 0.0)

        async def operation() -> None:
            raise ValueError("HTTP 404: Not Found")

        result = asyncio.run(manager.execute_with_retry(operation))

        assert not result.success
        assert result.attempts == 3
        assert sleep.delays == [1.0, 2.0]
        assert str(result.last_error) == "HTTP 404: Not Found"

    def test_cancellation_is_never_retried(self) -> None:
        sleep = FakeSleep()
        manager = RetryManager(RetryConfig(attempts=3), sleep=sleep)
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise asyncio.CancelledError()

        async def run() -> None:
            await manager.execute_with_retry(operation)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())

        assert calls == 1
        assert sleep.delays == []

    def test_zero_attempts_still_tries_once(self) -> None:
        manager = RetryManager(RetryConfig(attempts=0), sleep=FakeSleep())
        assert manager.max_attempts == 1

        async def operation() -> int:
            return 7

        result = asyncio.run(manager.execute_with_retry(operation))
        assert result.success
        assert result.result == 7
        assert result.attempts == 1
