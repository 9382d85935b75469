"""Exponential-backoff retry driven by error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from src.errors.classifier import normalize_error
from src.errors.taxonomy import DomainError, ErrorType
from src.pipeline_config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Jitter randomizes each delay by up to this fraction in either direction.
JITTER_FRACTION = 0.25

# Per-type retry profiles. Delays in seconds.
AUTHENTICATION_RETRY = RetryConfig(max_retries=1, initial_delay=2.0, max_delay=2.0, backoff_factor=1.0, jitter=False)
RATE_LIMIT_RETRY = RetryConfig(max_retries=3, initial_delay=5.0, max_delay=30.0, backoff_factor=2.0, jitter=True)
NETWORK_RETRY = RetryConfig(max_retries=5, initial_delay=1.0, max_delay=16.0, backoff_factor=2.0, jitter=True)
NO_RETRY = RetryConfig(max_retries=0, initial_delay=0.0, max_delay=0.0, backoff_factor=1.0, jitter=False)
DEFAULT_RETRY = RetryConfig()


def retry_config_for(error_type: ErrorType) -> RetryConfig:
    """Suggested retry profile for a caller that wants to retry a known failure."""
    match error_type:
        case ErrorType.AUTH_EXPIRED | ErrorType.AUTH_INVALID | ErrorType.API_KEY_INVALID:
            return AUTHENTICATION_RETRY
        case ErrorType.API_RATE_LIMITED:
            return RATE_LIMIT_RETRY
        case ErrorType.NETWORK_CONNECTION | ErrorType.NETWORK_TIMEOUT | ErrorType.NETWORK_DNS_FAILURE:
            return NETWORK_RETRY
        case ErrorType.JSON_PARSE_ERROR | ErrorType.MALFORMED_TIMESTAMPS | ErrorType.INVALID_RESPONSE:
            return NO_RETRY
        case _:
            return DEFAULT_RETRY


def calculate_retry_delay(
    config: RetryConfig,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number ``attempt + 1`` (``attempt`` is 0-based).

    ``min(initial_delay * backoff_factor ** attempt, max_delay)``, then
    randomized by +/- ``JITTER_FRACTION`` when ``config.jitter`` is set.
    """
    delay = min(config.initial_delay * config.backoff_factor**attempt, config.max_delay)
    if config.jitter:
        rng = rng or random.Random()
        delay += delay * JITTER_FRACTION * rng.uniform(-1.0, 1.0)
    return max(delay, 0.0)


@dataclass
class ErrorStatistics:
    """Aggregate counters owned by one :class:`RetryEngine`."""

    total_errors: int = 0
    errors_by_type: Counter[str] = field(default_factory=Counter)
    errors_by_category: Counter[str] = field(default_factory=Counter)
    retries_successful: int = 0
    retries_failed: int = 0

    def record(self, error: DomainError) -> None:
        self.total_errors += 1
        self.errors_by_type[error.type.value] += 1
        self.errors_by_category[error.category.value] += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "errors_by_type": dict(self.errors_by_type),
            "errors_by_category": dict(self.errors_by_category),
            "retries_successful": self.retries_successful,
            "retries_failed": self.retries_failed,
        }

    def reset(self) -> None:
        self.total_errors = 0
        self.errors_by_type.clear()
        self.errors_by_category.clear()
        self.retries_successful = 0
        self.retries_failed = 0


@dataclass(frozen=True)
class RetryEvent:
    """Emitted once per scheduled retry. ``attempt`` is the 1-based retry number."""

    attempt: int
    max_retries: int
    delay: float
    error: DomainError
    type: str = "retry"


RetryCallback = Callable[[RetryEvent], None]
Sleeper = Callable[[float], Awaitable[None]]


class RetryEngine:
    """Run an async operation, retrying retryable failures with backoff.

    ``sleep`` and ``rng`` are injectable so tests never wait in real time.
    """

    def __init__(
        self,
        stats: ErrorStatistics | None = None,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.stats = stats or ErrorStatistics()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig = DEFAULT_RETRY,
        progress_callback: RetryCallback | None = None,
        *,
        context: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Call ``operation`` until it succeeds, a non-retryable error occurs,
        or ``config.max_retries`` retries have been spent.

        Raises:
            DomainError: The classified final failure, with ``attempts`` set to
                the number of calls made.
            asyncio.CancelledError: ``cancel_event`` was set before a retry sleep.
        """
        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as exc:
                error = normalize_error(exc, context)
                self.stats.record(error)
                calls = attempt + 1
                if not error.is_retryable or attempt >= config.max_retries:
                    if attempt > 0:
                        self.stats.retries_failed += 1
                    logger.warning(
                        "Giving up after %d call(s): %s (%s)", calls, error.type.value, error.message
                    )
                    raise error.with_attempts(calls) from exc

                delay = calculate_retry_delay(config, attempt, self._rng)
                attempt += 1
                logger.info(
                    "Retrying after %s (retry %d/%d in %.2fs)",
                    error.type.value,
                    attempt,
                    config.max_retries,
                    delay,
                )
                if progress_callback is not None:
                    progress_callback(
                        RetryEvent(attempt=attempt, max_retries=config.max_retries, delay=delay, error=error)
                    )
                if cancel_event is not None and cancel_event.is_set():
                    raise asyncio.CancelledError("retry cancelled")
                await self._sleep(delay)
                continue

            if attempt > 0:
                self.stats.retries_successful += 1
            return result
