"""Tests for the retry engine and backoff schedule."""

from __future__ import annotations

import asyncio
import random

import pytest

from src.errors.classifier import make_error
from src.errors.retry import (
    AUTHENTICATION_RETRY,
    DEFAULT_RETRY,
    JITTER_FRACTION,
    NETWORK_RETRY,
    NO_RETRY,
    RATE_LIMIT_RETRY,
    ErrorStatistics,
    RetryEngine,
    RetryEvent,
    calculate_retry_delay,
    retry_config_for,
)
from src.errors.taxonomy import DomainError, ErrorType
from src.pipeline_config import RetryConfig

NO_JITTER = RetryConfig(max_retries=3, initial_delay=1.0, max_delay=10.0, backoff_factor=2.0, jitter=False)


class FlakyOperation:
    """Fails with the queued exceptions, then returns ``result``."""

    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _engine() -> tuple[RetryEngine, RecordingSleep]:
    sleep = RecordingSleep()
    return RetryEngine(sleep=sleep, rng=random.Random(7)), sleep


class TestWithRetry:
    def test_success_on_first_call(self) -> None:
        engine, sleep = _engine()
        operation = FlakyOperation([])

        assert asyncio.run(engine.with_retry(operation, NO_JITTER)) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []
        assert engine.stats.total_errors == 0

    @pytest.mark.parametrize("failures", [1, 2, 3])
    def test_transient_failures_then_success(self, failures: int) -> None:
        """k retryable failures (k <= max_retries) cost k+1 calls and k callbacks."""
        engine, sleep = _engine()
        operation = FlakyOperation([ConnectionError("connection reset")] * failures)
        events: list[RetryEvent] = []

        result = asyncio.run(engine.with_retry(operation, NO_JITTER, events.append))

        assert result == "ok"
        assert operation.calls == failures + 1
        assert [e.attempt for e in events] == list(range(1, failures + 1))
        assert all(e.max_retries == 3 and e.type == "retry" for e in events)
        assert all(e.error.type is ErrorType.NETWORK_CONNECTION for e in events)
        assert sleep.delays == [1.0, 2.0, 4.0][:failures]
        assert engine.stats.retries_successful == 1
        assert engine.stats.total_errors == failures

    def test_non_retryable_raises_immediately(self) -> None:
        engine, sleep = _engine()
        operation = FlakyOperation([make_error(ErrorType.API_KEY_INVALID, "bad key")])
        events: list[RetryEvent] = []

        with pytest.raises(DomainError) as exc_info:
            asyncio.run(engine.with_retry(operation, NO_JITTER, events.append))

        assert exc_info.value.type is ErrorType.API_KEY_INVALID
        assert exc_info.value.attempts == 1
        assert operation.calls == 1
        assert events == []
        assert sleep.delays == []

    def test_exhaustion_raises_last_error(self) -> None:
        engine, sleep = _engine()
        operation = FlakyOperation([TimeoutError("timed out")] * 10)

        with pytest.raises(DomainError) as exc_info:
            asyncio.run(engine.with_retry(operation, NO_JITTER))

        assert exc_info.value.type is ErrorType.NETWORK_TIMEOUT
        assert exc_info.value.attempts == 4
        assert operation.calls == 4
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert engine.stats.retries_failed == 1

    def test_zero_retries(self) -> None:
        engine, _ = _engine()
        operation = FlakyOperation([ConnectionError("reset")])
        with pytest.raises(DomainError):
            asyncio.run(engine.with_retry(operation, NO_RETRY))
        assert operation.calls == 1

    def test_raw_exception_is_chained(self) -> None:
        engine, _ = _engine()
        raw = ValueError("mystery")
        with pytest.raises(DomainError) as exc_info:
            asyncio.run(engine.with_retry(FlakyOperation([raw]), NO_JITTER))
        assert exc_info.value.__cause__ is raw

    def test_context_lands_on_error(self) -> None:
        engine, _ = _engine()
        with pytest.raises(DomainError) as exc_info:
            asyncio.run(
                engine.with_retry(FlakyOperation([ValueError("x")]), NO_JITTER, context={"chunk_index": 5})
            )
        assert exc_info.value.context["chunk_index"] == 5

    def test_cancelled_before_retry_sleep(self) -> None:
        engine, sleep = _engine()
        operation = FlakyOperation([ConnectionError("reset")] * 3)

        async def run() -> str:
            cancel = asyncio.Event()
            return await engine.with_retry(operation, NO_JITTER, lambda _event: cancel.set(), cancel_event=cancel)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())
        assert operation.calls == 1
        assert sleep.delays == []


class TestCalculateRetryDelay:
    def test_exponential_growth_capped(self) -> None:
        delays = [calculate_retry_delay(NO_JITTER, attempt) for attempt in range(6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    def test_jitter_stays_within_bounds(self) -> None:
        config = RetryConfig(initial_delay=4.0, max_delay=100.0, backoff_factor=1.0, jitter=True)
        rng = random.Random(42)
        delays = [calculate_retry_delay(config, 0, rng) for _ in range(200)]
        assert all(4.0 * (1 - JITTER_FRACTION) <= d <= 4.0 * (1 + JITTER_FRACTION) for d in delays)
        assert len(set(delays)) > 1

    def test_never_negative(self) -> None:
        config = RetryConfig(initial_delay=0.0, max_delay=0.0, jitter=True)
        assert calculate_retry_delay(config, 3) == 0.0


class TestRetryProfiles:
    def test_profiles(self) -> None:
        assert retry_config_for(ErrorType.AUTH_EXPIRED) is AUTHENTICATION_RETRY
        assert retry_config_for(ErrorType.API_RATE_LIMITED) is RATE_LIMIT_RETRY
        assert retry_config_for(ErrorType.NETWORK_TIMEOUT) is NETWORK_RETRY
        assert retry_config_for(ErrorType.JSON_PARSE_ERROR) is NO_RETRY
        assert retry_config_for(ErrorType.UNKNOWN) is DEFAULT_RETRY

    def test_rate_limit_profile_waits_longer(self) -> None:
        assert RATE_LIMIT_RETRY.initial_delay > DEFAULT_RETRY.initial_delay

    def test_rejects_negative_retries(self) -> None:
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)


class TestErrorStatistics:
    def test_record_and_snapshot(self) -> None:
        stats = ErrorStatistics()
        stats.record(make_error(ErrorType.API_RATE_LIMITED, "slow"))
        stats.record(make_error(ErrorType.API_RATE_LIMITED, "slow"))
        stats.record(make_error(ErrorType.NETWORK_TIMEOUT, "late"))

        snapshot = stats.snapshot()
        assert snapshot["total_errors"] == 3
        assert snapshot["errors_by_type"] == {"api_rate_limited": 2, "network_timeout": 1}
        assert snapshot["errors_by_category"] == {"api": 2, "network": 1}

    def test_reset(self) -> None:
        stats = ErrorStatistics()
        stats.record(make_error(ErrorType.UNKNOWN, "x"))
        stats.retries_failed = 2
        stats.reset()
        assert stats.snapshot() == {
            "total_errors": 0,
            "errors_by_type": {},
            "errors_by_category": {},
            "retries_successful": 0,
            "retries_failed": 0,
        }

    def test_engines_do_not_share_stats(self) -> None:
        first, _ = _engine()
        second, _ = _engine()
        with pytest.raises(DomainError):
            asyncio.run(first.with_retry(FlakyOperation([ValueError("x")]), NO_JITTER))
        assert first.stats.total_errors == 1
        assert second.stats.total_errors == 0
