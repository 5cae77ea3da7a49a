"""
Resilient Operation: Retry Inside a Circuit Breaker.

Composes the retry policy and the circuit breaker around one async callable:

    execute() ─► CircuitBreaker.call ─► RetryPolicy.execute ─► fn

- An open circuit rejects before any attempt is made
- The breaker sees the outcome of the whole retry sequence (one fire per
  execute), so a transient blip that the retries absorb never counts
- The breaker timeout bounds the whole sequence, backoff included

Profiles carry the preset numbers for the two outbound dependencies of the
agent: the WhatsApp notification sender and the model provider.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from wa_agent.core.config.constants import (
    MODEL_CALL_CB_ERROR_THRESHOLD_PERCENTAGE,
    MODEL_CALL_CB_RESET_TIMEOUT,
    MODEL_CALL_CB_TIMEOUT,
    MODEL_CALL_OPERATION_PREFIX,
    MODEL_CALL_RETRIES,
    MODEL_CALL_RETRY_MAX_TIMEOUT,
    MODEL_CALL_RETRY_MIN_TIMEOUT,
    NOTIFICATION_CB_ERROR_THRESHOLD_PERCENTAGE,
    NOTIFICATION_CB_RESET_TIMEOUT,
    NOTIFICATION_CB_TIMEOUT,
    NOTIFICATION_OPERATION_NAME,
    NOTIFICATION_RETRIES,
    NOTIFICATION_RETRY_MAX_TIMEOUT,
    NOTIFICATION_RETRY_MIN_TIMEOUT,
)
from wa_agent.core.config.settings import ResilienceSettings
from wa_agent.core.exceptions import CircuitBreakerOpenError, CircuitBreakerTimeoutError
from wa_agent.core.logging.logger import get_logger
from wa_agent.core.observability.metrics import MetricsCollector, timed
from wa_agent.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from wa_agent.core.resilience.error_classifier import RetryPredicate, is_retryable
from wa_agent.core.resilience.retry_policy import FailedAttemptObserver, RetryConfig, RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ResilienceProfile:
    """Named pair of retry and breaker settings."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    @classmethod
    def from_settings(cls, settings: ResilienceSettings) -> "ResilienceProfile":
        """Build the default profile from environment-backed settings."""
        return cls(
            retry=RetryConfig(
                retries=settings.RETRY_RETRIES,
                min_timeout=settings.RETRY_MIN_TIMEOUT,
                max_timeout=settings.RETRY_MAX_TIMEOUT,
                factor=settings.RETRY_FACTOR,
            ),
            circuit_breaker=CircuitBreakerConfig(
                timeout=settings.CB_TIMEOUT,
                error_threshold_percentage=settings.CB_ERROR_THRESHOLD_PERCENTAGE,
                reset_timeout=settings.CB_RESET_TIMEOUT,
                rolling_count_timeout=settings.CB_ROLLING_COUNT_TIMEOUT,
                rolling_count_buckets=settings.CB_ROLLING_COUNT_BUCKETS,
                volume_threshold=settings.CB_VOLUME_THRESHOLD,
                count_non_retryable_failures=settings.CB_COUNT_NON_RETRYABLE_FAILURES,
                cancel_on_timeout=settings.CB_CANCEL_ON_TIMEOUT,
            ),
        )


NOTIFICATION_PROFILE = ResilienceProfile(
    retry=RetryConfig(
        retries=NOTIFICATION_RETRIES,
        min_timeout=NOTIFICATION_RETRY_MIN_TIMEOUT,
        max_timeout=NOTIFICATION_RETRY_MAX_TIMEOUT,
    ),
    circuit_breaker=CircuitBreakerConfig(
        timeout=NOTIFICATION_CB_TIMEOUT,
        error_threshold_percentage=NOTIFICATION_CB_ERROR_THRESHOLD_PERCENTAGE,
        reset_timeout=NOTIFICATION_CB_RESET_TIMEOUT,
    ),
)

MODEL_CALL_PROFILE = ResilienceProfile(
    retry=RetryConfig(
        retries=MODEL_CALL_RETRIES,
        min_timeout=MODEL_CALL_RETRY_MIN_TIMEOUT,
        max_timeout=MODEL_CALL_RETRY_MAX_TIMEOUT,
    ),
    circuit_breaker=CircuitBreakerConfig(
        timeout=MODEL_CALL_CB_TIMEOUT,
        error_threshold_percentage=MODEL_CALL_CB_ERROR_THRESHOLD_PERCENTAGE,
        reset_timeout=MODEL_CALL_CB_RESET_TIMEOUT,
    ),
)


class ResilientOperation(Generic[T]):
    """
    Named, retried, circuit-protected async operation.

    Usage:
        op = ResilientOperation(client.complete, "llm-openai", profile=MODEL_CALL_PROFILE)
        reply = await op.execute(prompt)
        op.get_state()  # {"name": "llm-openai", "state": "closed", "stats": {...}}
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[T]],
        name: str,
        retry: RetryConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
        profile: ResilienceProfile | None = None,
        classifier: RetryPredicate = is_retryable,
        metrics: MetricsCollector | None = None,
        on_failed_attempt: FailedAttemptObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        profile = profile or ResilienceProfile()
        self.name = name
        self._fn = fn
        self._metrics = metrics
        self._on_failed_attempt = on_failed_attempt

        self._retry = RetryPolicy(
            config=retry or profile.retry,
            classifier=classifier,
            on_failed_attempt=self._handle_failed_attempt,
            name=name,
            sleep=sleep,
        )
        self._breaker = CircuitBreaker(
            name=name,
            config=circuit_breaker or profile.circuit_breaker,
            classifier=classifier,
            clock=clock,
            metrics=metrics,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def _handle_failed_attempt(self, attempt: int, retries_left: int, error: BaseException) -> None:
        if self._metrics:
            self._metrics.record_retry(self.name)
        if self._on_failed_attempt:
            self._on_failed_attempt(attempt, retries_left, error)

    def _record(self, outcome: str) -> None:
        if self._metrics:
            self._metrics.record_operation_result(self.name, outcome)

    async def execute(self, *args: Any, **kwargs: Any) -> T:
        """
        Run the operation with retry and circuit protection.

        Raises:
            CircuitBreakerOpenError: circuit open, fn not invoked
            CircuitBreakerTimeoutError: the retry sequence exceeded the breaker timeout
            Exception: the permanent error, or the last transient error after retries
        """
        with timed(self._metrics, self.name):
            try:
                result = await self._breaker.call(self._retry.execute, self._fn, *args, **kwargs)
            except CircuitBreakerOpenError:
                logger.warning(
                    "Operation rejected, circuit open",
                    stage="RO.REJECT",
                    operation=self.name,
                )
                self._record("rejected")
                raise
            except CircuitBreakerTimeoutError as e:
                logger.error(
                    "Operation timed out",
                    stage="RO.TIMEOUT",
                    operation=self.name,
                    timeout=e.details.get("timeout"),
                )
                self._record("timeout")
                raise
            except Exception as e:
                logger.error(
                    f"{self.name} failed",
                    stage="RO.FAIL",
                    operation=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    circuit_state=self._breaker.state.value,
                )
                self._record("failure")
                raise

        self._record("success")
        return result

    async def __call__(self, *args: Any, **kwargs: Any) -> T:
        return await self.execute(*args, **kwargs)

    def get_state(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._breaker.state.value,
            "stats": self._breaker.stats(),
        }

    def get_stats(self) -> dict[str, Any]:
        return self._breaker.stats()


def make_resilient(
    fn: Callable[..., Awaitable[T]],
    name: str,
    profile: ResilienceProfile | None = None,
    **options: Any,
) -> ResilientOperation[T]:
    """
    Wrap ``fn`` as a resilient operation.

    The returned object is awaitable like ``fn`` itself and also exposes
    ``get_state()`` and ``breaker`` for health endpoints.
    """
    return ResilientOperation(fn, name, profile=profile, **options)


def wrap_notification_sender(
    send: Callable[..., Awaitable[T]],
    name: str = NOTIFICATION_OPERATION_NAME,
    **options: Any,
) -> ResilientOperation[T]:
    """Protect an outbound WhatsApp send with the notification profile."""
    return make_resilient(send, name, profile=NOTIFICATION_PROFILE, **options)


def wrap_model_call(
    call: Callable[..., Awaitable[T]],
    provider: str,
    **options: Any,
) -> ResilientOperation[T]:
    """Protect a model provider call with the model-call profile (``llm-<provider>``)."""
    return make_resilient(call, f"{MODEL_CALL_OPERATION_PREFIX}-{provider}", profile=MODEL_CALL_PROFILE, **options)
