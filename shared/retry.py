"""
Retry mechanism for resilient operations.

A ``RetryPolicy`` bundles the attempt budget, the backoff schedule and the
predicate deciding which exceptions are transient, so callers keep their
error classification as data instead of inline control flow.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


BackoffFn = Callable[[int], float]
RetryPredicate = Callable[[BaseException], bool]


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def linear_backoff(base_delay: float = 1.0, max_delay: float = 60.0) -> BackoffFn:
    """Wait ``base_delay * attempt`` after the given failed attempt."""
    def _delay(attempt: int) -> float:
        return min(base_delay * attempt, max_delay)
    return _delay


def retry_on_types(*exception_types: type) -> RetryPredicate:
    """Predicate matching any of the given exception types."""
    def _predicate(exc: BaseException) -> bool:
        return isinstance(exc, exception_types)
    return _predicate


class RetryPolicy:
    """Bounded retry combinator."""

    def __init__(self,
                 max_attempts: int = 3,
                 backoff: Optional[BackoffFn] = None,
                 retry_on: Optional[RetryPredicate] = None,
                 name: str = "default",
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or linear_backoff()
        self.retry_on = retry_on or retry_on_types(Exception)
        self.name = name
        self._sleep = sleep
        self.logger = get_logger(f"gateway.retry.{name}")

    async def execute(self, func: Callable[[], Awaitable[Any]],
                      on_retry: Optional[Callable[[int, BaseException, float], None]] = None) -> Any:
        """Run ``func`` until it succeeds, fails permanently, or the budget runs out.

        Non-retryable exceptions propagate untouched on the attempt they occur.
        Exhausting the budget raises ``RetryError`` wrapping the last failure.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func()
            except Exception as exc:
                if not self.retry_on(exc):
                    raise

                if attempt == self.max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(exc)
                    )
                    raise RetryError(
                        f"{self.name} failed after {self.max_attempts} attempts",
                        last_exception=exc,
                        attempts=attempt
                    ) from exc

                delay = self.backoff(attempt)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay=delay,
                    error=str(exc)
                )
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                await self._sleep(delay)
                continue

            if attempt > 1:
                self.logger.info("Retry succeeded", attempt=attempt)
            return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise RuntimeError("unreachable")
