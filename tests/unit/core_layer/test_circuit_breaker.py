"""
Unit Tests for the Rolling-Window CircuitBreaker

Tests state transitions (closed -> open -> half-open -> closed/open), volume
and threshold handling, window expiry, timeouts and events.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from wa_agent.core.config.constants import CircuitState
from wa_agent.core.exceptions import CircuitBreakerOpenError, CircuitBreakerTimeoutError
from wa_agent.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, RollingWindow


class HttpError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.statusCode = status_code


def make_breaker(clock, **overrides):
    config = CircuitBreakerConfig(**{"timeout": None, "volume_threshold": 5, **overrides})
    return CircuitBreaker("test-dependency", config, clock=clock)


async def fail_times(breaker, fn, count):
    for _ in range(count):
        with pytest.raises(Exception):
            await breaker.call(fn)


@pytest.mark.unit
class TestRollingWindow:
    def test_old_buckets_expire(self, clock):
        window = RollingWindow(duration=10.0, bucket_count=10, clock=clock)
        window.current().failures += 3

        clock.advance(5)
        window.current().successes += 1
        assert window.totals().failures == 3

        clock.advance(6)
        totals = window.totals()
        assert totals.failures == 0
        assert totals.successes == 1

    def test_reset_clears_everything(self, clock):
        window = RollingWindow(duration=10.0, bucket_count=10, clock=clock)
        window.current().failures += 1
        window.reset()
        assert window.totals().failures == 0


@pytest.mark.unit
class TestCircuitBreakerTransitions:
    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_results_through(self, clock):
        breaker = make_breaker(clock)
        fn = AsyncMock(return_value="ok")

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(fn, 1, key="v") == "ok"
        fn.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects_without_calling(self, clock):
        breaker = make_breaker(clock, error_threshold_percentage=50)
        fn = AsyncMock(side_effect=RuntimeError("down"))

        await fail_times(breaker, fn, 5)
        assert breaker.state == CircuitState.OPEN
        assert fn.call_count == 5

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.call(fn)

        assert fn.call_count == 5
        assert exc_info.value.details["operation"] == "test-dependency"
        assert exc_info.value.details["retry_after"] == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_does_not_open_below_volume_threshold(self, clock):
        breaker = make_breaker(clock, volume_threshold=5)
        fn = AsyncMock(side_effect=RuntimeError("down"))

        await fail_times(breaker, fn, 4)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_does_not_open_below_error_rate(self, clock):
        breaker = make_breaker(clock, error_threshold_percentage=50)
        ok = AsyncMock(return_value="ok")
        bad = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(6):
            await breaker.call(ok)
        await fail_times(breaker, bad, 5)

        # 5 / 11 < 50%
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_count(self, clock):
        breaker = make_breaker(clock, rolling_count_timeout=10, rolling_count_buckets=10)
        fn = AsyncMock(side_effect=RuntimeError("down"))

        await fail_times(breaker, fn, 4)
        clock.advance(11)
        await fail_times(breaker, fn, 1)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_after_reset_timeout_then_close_on_success(self, clock):
        breaker = make_breaker(clock, reset_timeout=30)
        bad = AsyncMock(side_effect=RuntimeError("down"))
        await fail_times(breaker, bad, 5)

        clock.advance(29)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(AsyncMock())

        clock.advance(1)
        ok = AsyncMock(return_value="recovered")
        assert await breaker.call(ok) == "recovered"

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats()["failures"] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens_and_restarts_timer(self, clock):
        breaker = make_breaker(clock, reset_timeout=30)
        bad = AsyncMock(side_effect=RuntimeError("down"))
        await fail_times(breaker, bad, 5)

        clock.advance(30)
        await fail_times(breaker, bad, 1)
        assert breaker.state == CircuitState.OPEN

        clock.advance(10)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(bad)
        assert bad.call_count == 6

    @pytest.mark.asyncio
    async def test_half_open_admits_single_trial(self, clock):
        breaker = make_breaker(clock, reset_timeout=30)
        await fail_times(breaker, AsyncMock(side_effect=RuntimeError("down")), 5)
        clock.advance(30)

        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.call(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        other = AsyncMock()
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(other)
        other.assert_not_called()

        release.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_straggler_from_closed_state_does_not_decide_half_open(self, clock):
        breaker = make_breaker(clock, reset_timeout=30)
        straggler_done = asyncio.Event()
        trial_done = asyncio.Event()

        async def straggler():
            await straggler_done.wait()
            return "late"

        async def slow_trial():
            await trial_done.wait()
            raise RuntimeError("still down")

        late = asyncio.create_task(breaker.call(straggler))
        await asyncio.sleep(0)
        await fail_times(breaker, AsyncMock(side_effect=RuntimeError("down")), 5)
        assert breaker.state == CircuitState.OPEN

        clock.advance(30)
        trial = asyncio.create_task(breaker.call(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        straggler_done.set()
        assert await late == "late"
        assert breaker.state == CircuitState.HALF_OPEN

        trial_done.set()
        with pytest.raises(RuntimeError):
            await trial
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_trip_and_reset(self, clock):
        breaker = make_breaker(clock)

        breaker.trip()
        assert breaker.is_open

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


@pytest.mark.unit
class TestNonRetryableAccounting:
    @pytest.mark.asyncio
    async def test_permanent_errors_count_by_default(self, clock):
        breaker = make_breaker(clock)
        await fail_times(breaker, AsyncMock(side_effect=HttpError(400)), 5)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_permanent_errors_can_be_excluded(self, clock):
        breaker = make_breaker(clock, count_non_retryable_failures=False)
        await fail_times(breaker, AsyncMock(side_effect=HttpError(400)), 10)

        assert breaker.state == CircuitState.CLOSED
        stats = breaker.stats()
        assert stats["failures"] == 0
        assert stats["ignored_failures"] == 10


@pytest.mark.unit
class TestCircuitBreakerTimeout:
    @pytest.mark.asyncio
    async def test_timeout_raises_and_cancels_task(self, clock):
        breaker = make_breaker(clock, timeout=0.05)
        cancelled = asyncio.Event()

        async def hang():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(CircuitBreakerTimeoutError):
            await breaker.call(hang)

        await asyncio.wait_for(cancelled.wait(), timeout=1)
        stats = breaker.stats()
        assert stats["timeouts"] == 1
        assert stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_timeout_without_cancel_leaves_task_running(self, clock):
        breaker = make_breaker(clock, timeout=0.05, cancel_on_timeout=False)
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.1)
            finished.set()
            return "late"

        with pytest.raises(CircuitBreakerTimeoutError):
            await breaker.call(slow)

        await asyncio.wait_for(finished.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_inner_timeout_error_is_an_ordinary_failure(self, clock):
        breaker = make_breaker(clock, timeout=5)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(AsyncMock(side_effect=asyncio.TimeoutError()))

        assert breaker.stats()["timeouts"] == 0
        assert breaker.stats()["failures"] == 1

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(timeout=0)


@pytest.mark.unit
class TestCircuitBreakerEvents:
    @pytest.mark.asyncio
    async def test_events_are_emitted(self, clock):
        breaker = make_breaker(clock, reset_timeout=30)
        seen = []
        for event in ("open", "half_open", "close", "reject", "success", "failure"):
            breaker.on(event, lambda e: seen.append(e.type))

        await fail_times(breaker, AsyncMock(side_effect=RuntimeError("down")), 5)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(AsyncMock())
        clock.advance(30)
        await breaker.call(AsyncMock(return_value="ok"))

        assert seen.count("failure") == 5
        assert seen.index("open") < seen.index("reject") < seen.index("half_open")
        assert seen[-2:] == ["success", "close"]

    @pytest.mark.asyncio
    async def test_listener_errors_are_swallowed(self, clock):
        breaker = make_breaker(clock)
        breaker.on("success", MagicMock(side_effect=RuntimeError("listener bug")))

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"

    def test_unknown_event_rejected(self, clock):
        with pytest.raises(ValueError):
            make_breaker(clock).on("explode", lambda e: None)
