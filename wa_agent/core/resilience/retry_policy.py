"""
Retry Policy with Capped Exponential Backoff.

Runs an async operation up to ``retries + 1`` times using tenacity:

- Wait before retry n (n = 1..retries) is
  ``min(max_timeout, min_timeout * factor ** (n - 1))``
- Errors the classifier marks as permanent abort immediately and the original
  error propagates untouched
- When retries run out the last error propagates (not a tenacity RetryError)
- Every failed, retryable attempt is reported to an observer with
  ``(attempt_number, retries_left, error)``; the observer can log or count
  but never changes what happens next
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from wa_agent.core.config.constants import (
    DEFAULT_RETRIES,
    DEFAULT_RETRY_FACTOR,
    DEFAULT_RETRY_MAX_TIMEOUT,
    DEFAULT_RETRY_MIN_TIMEOUT,
)
from wa_agent.core.logging.logger import get_logger
from wa_agent.core.resilience.error_classifier import RetryPredicate, is_retryable

logger = get_logger(__name__)

T = TypeVar("T")

FailedAttemptObserver = Callable[[int, int, BaseException], Any]


class RetryConfig(BaseModel):
    """Retry parameters. Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    retries: int = Field(default=DEFAULT_RETRIES, ge=0, description="Additional attempts after the first")
    min_timeout: float = Field(default=DEFAULT_RETRY_MIN_TIMEOUT, ge=0, description="First backoff")
    max_timeout: float = Field(default=DEFAULT_RETRY_MAX_TIMEOUT, ge=0, description="Backoff cap")
    factor: float = Field(default=DEFAULT_RETRY_FACTOR, ge=1, description="Backoff growth factor")

    def backoff(self, retry_number: int) -> float:
        """Seconds to wait before retry ``retry_number`` (1-based)."""
        return min(self.max_timeout, self.min_timeout * self.factor ** (retry_number - 1))


class RetryPolicy:
    """
    Bounded retry around a fallible async call.

    Usage:
        policy = RetryPolicy(RetryConfig(retries=3, min_timeout=0.1), name="twilio")
        result = await policy.execute(send_message, to, body)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        classifier: RetryPredicate = is_retryable,
        on_failed_attempt: FailedAttemptObserver | None = None,
        name: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.name = name
        self._classifier = classifier
        self._on_failed_attempt = on_failed_attempt
        self._sleep = sleep

    def _should_retry(self, error: BaseException) -> bool:
        # Cancellation and other BaseExceptions are never retried
        if not isinstance(error, Exception):
            return False

        if not self._classifier(error):
            logger.info(
                "Non-retryable error, not retrying",
                stage="R.1",
                operation=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )
            return False
        return True

    def _after_attempt(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is None:
            return

        attempt = retry_state.attempt_number
        retries_left = max(self.config.retries + 1 - attempt, 0)

        logger.warning(
            "Retry attempt failed",
            stage="R.2",
            operation=self.name,
            attempt=attempt,
            retries_left=retries_left,
            error=str(error),
        )

        if self._on_failed_attempt is None:
            return
        try:
            self._on_failed_attempt(attempt, retries_left, error)
        except Exception as observer_error:
            logger.warning(
                "Failed-attempt observer raised",
                stage="R.2.ERROR",
                operation=self.name,
                error=str(observer_error),
            )

    def _build_retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.retries + 1),
            wait=wait_exponential(
                multiplier=self.config.min_timeout,
                exp_base=self.config.factor,
                max=self.config.max_timeout,
            ),
            retry=retry_if_exception(self._should_retry),
            after=self._after_attempt,
            sleep=self._sleep,
            reraise=True,
        )

    async def execute(self, fn: Callable[..., Awaitable[T]], /, *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn(*args, **kwargs)`` under this policy.

        Raises:
            The original error for permanent failures, or the last error once
            retries are exhausted.
        """
        retrying = self._build_retrying()
        return await retrying(fn, *args, **kwargs)
