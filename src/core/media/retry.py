"""
Bounded-attempt retry with exponential backoff.

Only the resumable video upload retries today, but the policy is not tied
to it: any async operation can be wrapped, and the sleep function is
injectable so tests can record delays instead of waiting.

Example:
    policy = RetryPolicy(max_attempts=3)
    media_id = await policy.run(lambda: upload_once(path), operation_name="stream_upload")
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .models import RetryState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait after the given (1-based) failed attempt: 2, 4, 8..."""
    return float(2 ** attempt)


class RetryExhaustedError(Exception):
    """All attempts failed. Wraps the last underlying error."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"failed after {attempts} attempts: {last_error}")


class RetryPolicy:
    """
    Retry an async operation up to max_attempts times.

    Attributes:
        max_attempts: total attempts including the first one
        backoff: maps the failed attempt number (1-based) to a delay in seconds
        retryable_exceptions: exceptions that trigger another attempt;
            anything else propagates immediately
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Callable[[int], float] = exponential_backoff,
        retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retryable_exceptions = retryable_exceptions
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        on_retry: Optional[Callable[[RetryState], None]] = None,
    ) -> T:
        """
        Run operation until it succeeds or attempts run out.

        Raises:
            RetryExhaustedError: every attempt raised a retryable exception
        """
        state = RetryState()

        while state.attempt < self.max_attempts:
            state.attempt += 1
            try:
                return await operation()
            except self.retryable_exceptions as e:
                state.last_error = e

                if state.attempt >= self.max_attempts:
                    logger.error(
                        f"{operation_name} failed after {state.attempt} attempts",
                        extra={"error": str(e), "error_type": type(e).__name__},
                    )
                    break

                state.next_backoff_seconds = self.backoff(state.attempt)
                logger.warning(
                    f"{operation_name} failed (attempt {state.attempt}/{self.max_attempts}), "
                    f"retrying in {state.next_backoff_seconds:.1f}s",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
                if on_retry is not None:
                    on_retry(state)
                await self._sleep(state.next_backoff_seconds)

        assert state.last_error is not None
        raise RetryExhaustedError(state.attempt, state.last_error)
