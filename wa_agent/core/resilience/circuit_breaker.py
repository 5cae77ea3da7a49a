"""
Rolling-Window Circuit Breaker.

MECHANISM OF ACTION:
-------------------
1.  **Rolling Window**:
    Outcomes are counted in a window of ``rolling_count_timeout`` seconds split
    into ``rolling_count_buckets`` buckets. As time passes whole buckets fall
    off the back, so the failure rate always reflects recent traffic only.

2.  **State Transitions**:
    - **CLOSED**: Calls pass through; successes and failures are counted.
      - After a failure, if the window holds at least ``volume_threshold``
        calls and the failure percentage is >= ``error_threshold_percentage``,
        the circuit OPENS.

    - **OPEN**: Calls are rejected with ``CircuitBreakerOpenError`` without
      invoking the operation.
      - After ``reset_timeout`` seconds the next call moves the circuit to
        HALF-OPEN and is let through.

    - **HALF-OPEN**: Exactly one trial call is in flight; concurrent calls are
      rejected.
      - On Success: CLOSED, window reset.
      - On Failure: OPEN again, reset timer restarts.

3.  **Timeouts**:
    A call running longer than ``timeout`` counts as a failure and raises
    ``CircuitBreakerTimeoutError``. With ``cancel_on_timeout`` the task is
    cancelled (asyncio cancellation is the signal the wrapped coroutine
    sees). Without it the task keeps running detached and its result is
    discarded: a timed-out send may still be delivered later.

State lives in process memory and is not shared between instances.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wa_agent.core.config.constants import (
    DEFAULT_CB_ERROR_THRESHOLD_PERCENTAGE,
    DEFAULT_CB_RESET_TIMEOUT,
    DEFAULT_CB_ROLLING_COUNT_BUCKETS,
    DEFAULT_CB_ROLLING_COUNT_TIMEOUT,
    DEFAULT_CB_TIMEOUT,
    DEFAULT_CB_VOLUME_THRESHOLD,
    CircuitState,
)
from wa_agent.core.exceptions import CircuitBreakerOpenError, CircuitBreakerTimeoutError
from wa_agent.core.logging.logger import get_logger
from wa_agent.core.observability.metrics import MetricsCollector
from wa_agent.core.resilience.error_classifier import RetryPredicate, is_retryable

logger = get_logger(__name__)

T = TypeVar("T")

CIRCUIT_EVENTS = frozenset(
    {"open", "half_open", "close", "timeout", "reject", "success", "failure"}
)


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker parameters. Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    timeout: float | None = Field(default=DEFAULT_CB_TIMEOUT, description="Per-call timeout; None disables")
    error_threshold_percentage: float = Field(default=DEFAULT_CB_ERROR_THRESHOLD_PERCENTAGE, ge=0, le=100)
    reset_timeout: float = Field(default=DEFAULT_CB_RESET_TIMEOUT, ge=0)
    rolling_count_timeout: float = Field(default=DEFAULT_CB_ROLLING_COUNT_TIMEOUT, gt=0)
    rolling_count_buckets: int = Field(default=DEFAULT_CB_ROLLING_COUNT_BUCKETS, ge=1)
    volume_threshold: int = Field(default=DEFAULT_CB_VOLUME_THRESHOLD, ge=0, description="Min calls before opening")
    count_non_retryable_failures: bool = Field(
        default=True, description="Count permanent (caller) errors toward the failure rate"
    )
    cancel_on_timeout: bool = Field(default=True, description="Cancel the task when the call times out")

    @model_validator(mode="after")
    def validate_timeout(self):
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive or None")
        return self

    @property
    def bucket_duration(self) -> float:
        return self.rolling_count_timeout / self.rolling_count_buckets


@dataclass
class WindowBucket:
    """Outcome counters for one slice of the rolling window."""

    fires: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    rejects: int = 0
    ignored: int = 0


@dataclass
class BreakerEvent:
    """Payload handed to event listeners."""

    type: str
    name: str
    state: CircuitState
    error: BaseException | None = None
    at: float = field(default_factory=time.time)


class RollingWindow:
    """
    Fixed-bucket sliding window of call outcomes.

    Buckets are keyed by ``int(now // bucket_duration)``; anything older than
    ``bucket_count`` buckets is dropped on access.
    """

    def __init__(self, duration: float, bucket_count: int, clock: Callable[[], float]):
        self._bucket_duration = duration / bucket_count
        self._bucket_count = bucket_count
        self._clock = clock
        self._buckets: deque[tuple[int, WindowBucket]] = deque()

    def _bucket_id(self) -> int:
        return int(self._clock() // self._bucket_duration)

    def _expire(self, bucket_id: int) -> None:
        oldest_live = bucket_id - self._bucket_count + 1
        while self._buckets and self._buckets[0][0] < oldest_live:
            self._buckets.popleft()

    def current(self) -> WindowBucket:
        bucket_id = self._bucket_id()
        self._expire(bucket_id)
        if not self._buckets or self._buckets[-1][0] != bucket_id:
            self._buckets.append((bucket_id, WindowBucket()))
        return self._buckets[-1][1]

    def totals(self) -> WindowBucket:
        self._expire(self._bucket_id())
        total = WindowBucket()
        for _, bucket in self._buckets:
            total.fires += bucket.fires
            total.successes += bucket.successes
            total.failures += bucket.failures
            total.timeouts += bucket.timeouts
            total.rejects += bucket.rejects
            total.ignored += bucket.ignored
        return total

    def reset(self) -> None:
        self._buckets.clear()


class CircuitBreaker:
    """
    In-process circuit breaker for one logical dependency.

    Usage:
        breaker = CircuitBreaker("llm-openai", CircuitBreakerConfig(timeout=60))
        breaker.on("open", lambda event: alert(event.name))
        result = await breaker.call(client.complete, prompt)
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        classifier: RetryPredicate = is_retryable,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._classifier = classifier
        self._clock = clock
        self._metrics = metrics
        self._window = RollingWindow(
            self.config.rolling_count_timeout, self.config.rolling_count_buckets, clock
        )

        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._last_transition_at = time.time()
        self._trial_in_flight = False

        self._listeners: dict[str, list[Callable[[BreakerEvent], Any]]] = {}
        self._detached: set[asyncio.Task] = set()

        if self._metrics:
            self._metrics.set_circuit_state(self.name, self._state.value)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    def stats(self) -> dict[str, Any]:
        """Snapshot of the rolling window and state timing."""
        totals = self._window.totals()
        volume = totals.successes + totals.failures
        return {
            "fires": totals.fires,
            "successes": totals.successes,
            "failures": totals.failures,
            "timeouts": totals.timeouts,
            "rejects": totals.rejects,
            "ignored_failures": totals.ignored,
            "error_percentage": round(totals.failures * 100 / volume, 2) if volume else 0.0,
            "last_transition_at": self._last_transition_at,
            "detached_calls": len(self._detached),
        }

    def get_state(self) -> dict[str, Any]:
        return {"state": self._state.value, "stats": self.stats()}

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, handler: Callable[[BreakerEvent], Any]) -> None:
        """Register a listener for one of ``CIRCUIT_EVENTS``."""
        if event not in CIRCUIT_EVENTS:
            raise ValueError(f"Unknown circuit breaker event: {event}")
        self._listeners.setdefault(event, []).append(handler)

    def _emit(self, event: str, error: BaseException | None = None) -> None:
        handlers = self._listeners.get(event)
        if not handlers:
            return
        payload = BreakerEvent(type=event, name=self.name, state=self._state, error=error)
        for handler in list(handlers):
            try:
                handler(payload)
            except Exception as e:
                logger.warning(
                    "Circuit breaker listener raised",
                    stage="CB.EVENT.ERROR",
                    operation=self.name,
                    event_type=event,
                    error=str(e),
                )

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._last_transition_at = time.time()
        if self._metrics:
            self._metrics.set_circuit_state(self.name, state.value)

    def _open(self, error: BaseException | None = None) -> None:
        self._set_state(CircuitState.OPEN)
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning("Circuit breaker opened", stage="CB.OPEN", operation=self.name, **self.stats())
        self._emit("open", error)

    def _half_open(self) -> None:
        self._set_state(CircuitState.HALF_OPEN)
        logger.info("Circuit breaker half-open, testing...", stage="CB.HALF_OPEN", operation=self.name)
        self._emit("half_open")

    def _close(self) -> None:
        self._set_state(CircuitState.CLOSED)
        self._opened_at = None
        self._trial_in_flight = False
        self._window.reset()
        logger.info("Circuit breaker closed", stage="CB.CLOSE", operation=self.name)
        self._emit("close")

    def trip(self) -> None:
        """Force the circuit open (e.g. on an operator signal)."""
        self._open()

    def reset(self) -> None:
        """Force the circuit closed and clear the window."""
        self._close()

    # -------------------------------------------------------------------------
    # Call Path
    # -------------------------------------------------------------------------

    def _reject(self) -> None:
        self._window.current().rejects += 1
        retry_after = None
        if self._opened_at is not None:
            retry_after = max(self.config.reset_timeout - (self._clock() - self._opened_at), 0.0)
        self._emit("reject")
        raise CircuitBreakerOpenError(
            message=f"Circuit open for {self.name}",
            details={"operation": self.name, "state": self._state.value, "retry_after": retry_after},
        )

    def _admit(self) -> bool:
        """
        Decide whether a call may proceed.

        Returns:
            True if the admitted call is the half-open trial
        """
        if self._state is CircuitState.OPEN:
            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed < self.config.reset_timeout:
                self._reject()
            self._half_open()

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self._reject()
            self._trial_in_flight = True
            return True

        return False

    def _record_success(self, is_trial: bool = False) -> None:
        self._window.current().successes += 1
        self._emit("success")
        # Only the trial call decides a half-open circuit
        if is_trial and self._state is CircuitState.HALF_OPEN:
            self._close()

    def _record_failure(self, error: BaseException, timed_out: bool = False, is_trial: bool = False) -> None:
        bucket = self._window.current()

        if (
            not timed_out
            and not self.config.count_non_retryable_failures
            and not self._classifier(error)
        ):
            bucket.ignored += 1
            # A permanent error says nothing about the dependency; release the trial slot
            if is_trial and self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
            return

        bucket.failures += 1
        if timed_out:
            bucket.timeouts += 1
        self._emit("failure", error)

        if self._state is CircuitState.HALF_OPEN:
            if is_trial:
                self._open(error)
            return

        if self._state is CircuitState.CLOSED and self._threshold_reached():
            self._open(error)

    def _threshold_reached(self) -> bool:
        totals = self._window.totals()
        volume = totals.successes + totals.failures
        if volume == 0 or volume < self.config.volume_threshold:
            return False
        return totals.failures * 100 / volume >= self.config.error_threshold_percentage

    def _track_detached(self, task: asyncio.Task) -> None:
        self._detached.add(task)

        def _discard(finished: asyncio.Task) -> None:
            self._detached.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.debug(
                    "Detached call finished with error after timeout",
                    stage="CB.TIMEOUT.LATE",
                    operation=self.name,
                    error=str(finished.exception()),
                )

        task.add_done_callback(_discard)

    async def _invoke(self, fn: Callable[..., Awaitable[T]], args: tuple, kwargs: dict) -> T:
        if self.config.timeout is None:
            return await fn(*args, **kwargs)

        task = asyncio.ensure_future(fn(*args, **kwargs))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        if self.config.cancel_on_timeout:
            task.cancel()
        self._track_detached(task)

        raise CircuitBreakerTimeoutError(
            message=f"Call to {self.name} timed out after {self.config.timeout}s",
            details={"operation": self.name, "timeout": self.config.timeout},
        )

    async def call(self, fn: Callable[..., Awaitable[T]], /, *args: Any, **kwargs: Any) -> T:
        """
        Invoke ``fn`` through the breaker.

        Raises:
            CircuitBreakerOpenError: circuit open (fn not invoked)
            CircuitBreakerTimeoutError: fn exceeded the timeout
            Exception: whatever fn raised
        """
        is_trial = self._admit()
        self._window.current().fires += 1

        try:
            result = await self._invoke(fn, args, kwargs)
        except CircuitBreakerTimeoutError as e:
            logger.error("Circuit breaker timeout", stage="CB.TIMEOUT", operation=self.name)
            self._emit("timeout", e)
            self._record_failure(e, timed_out=True, is_trial=is_trial)
            raise
        except asyncio.CancelledError:
            if is_trial and self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
            raise
        except Exception as e:
            self._record_failure(e, is_trial=is_trial)
            raise

        self._record_success(is_trial)
        return result
