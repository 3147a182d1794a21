"""Tests for the retry executor.

Uses a real OperationCircuitBreaker on a fake clock, a recording no-op
sleep and a seeded random source so every run is deterministic.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from review_dispatch.circuit_breaker import OperationCircuitBreaker
from review_dispatch.circuit_breaker_config import CircuitBreakerConfig, CircuitState
from review_dispatch.models import ReviewResult
from review_dispatch.retry_executor import RetryExecutor


def _failed(exc: Exception) -> ReviewResult:
    return ReviewResult.failed("security", str(exc) or type(exc).__name__, 1)


async def _execute(executor: RetryExecutor[ReviewResult], operation, **kwargs):
    return await executor.execute(
        operation,
        error_mapper=_failed,
        is_success=lambda r: r.success,
        error_message=lambda r: r.error_message,
        **kwargs,
    )


class TestRetryExecutor:
    """Attempt accounting, classification and breaker integration."""

    @pytest.fixture
    def breaker(self, fake_clock) -> OperationCircuitBreaker:
        return OperationCircuitBreaker(
            "review",
            CircuitBreakerConfig(failure_threshold=10, base_open_duration_ms=1000),
            clock=fake_clock,
        )

    @pytest.fixture
    def executor(self, breaker, no_sleep, rng) -> RetryExecutor[ReviewResult]:
        return RetryExecutor(
            "review:security#1",
            breaker,
            max_attempts=3,
            backoff_base_ms=1000,
            backoff_max_ms=8000,
            sleep=no_sleep,
            rng=rng,
        )

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, executor, breaker, no_sleep) -> None:
        """A success on attempt 1 uses one attempt and never sleeps."""
        operation = AsyncMock(return_value=ReviewResult.succeeded("security", "ok", 1))

        outcome = await _execute(executor, operation)

        assert outcome.success is True
        assert outcome.attempts_used == 1
        assert outcome.value.content == "ok"
        assert outcome.error_message is None
        assert no_sleep.delays == []
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [1, 2, 3])
    async def test_success_on_attempt_k(self, executor, no_sleep, k: int) -> None:
        """A retryable error that clears on attempt k reports attempts_used == k."""
        effects: list[object] = [TimeoutError("timed out")] * (k - 1)
        effects.append(ReviewResult.succeeded("security", "ok", 1))
        operation = AsyncMock(side_effect=effects)

        outcome = await _execute(executor, operation)

        assert outcome.success is True
        assert outcome.attempts_used == k
        assert operation.await_count == k
        assert len(no_sleep.delays) == k - 1

    @pytest.mark.asyncio
    async def test_backoff_delays_follow_equal_jitter(self, executor, no_sleep) -> None:
        """Sleeps grow with the attempt and stay within [exp/2, exp]."""
        operation = AsyncMock(side_effect=ConnectionResetError("connection reset"))

        await _execute(executor, operation)

        first, second = no_sleep.delays
        assert 0.5 <= first <= 1.0
        assert 1.0 <= second <= 2.0

    @pytest.mark.asyncio
    async def test_fatal_exception_stops_after_one_attempt(
        self, executor, breaker, no_sleep
    ) -> None:
        """A fatal error surfaces immediately and is recorded once."""
        operation = AsyncMock(side_effect=PermissionError("401 Unauthorized"))

        outcome = await _execute(executor, operation)

        assert outcome.success is False
        assert outcome.attempts_used == 1
        assert outcome.error_message == "401 Unauthorized"
        assert outcome.value.error_message == "401 Unauthorized"
        assert no_sleep.delays == []
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_unclassified_exception_is_not_retried(self, executor) -> None:
        """Exceptions without a transient signal are not retried."""
        operation = AsyncMock(side_effect=RuntimeError("unexpected state"))

        outcome = await _execute(executor, operation)

        assert outcome.attempts_used == 1

    @pytest.mark.asyncio
    async def test_failed_result_with_fatal_message(self, executor, no_sleep) -> None:
        """A failed result naming a fatal condition is returned as-is."""
        failed = ReviewResult.failed("security", "validation error: bad target", 1)
        operation = AsyncMock(return_value=failed)

        outcome = await _execute(executor, operation)

        assert outcome.value is failed
        assert outcome.attempts_used == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_failed_result_with_caller_marker(self, executor) -> None:
        """Caller-supplied markers make an otherwise retryable failure fatal."""
        operation = AsyncMock(return_value=ReviewResult.failed("security", "quota hit", 1))

        outcome = await _execute(executor, operation, non_retryable_markers=["quota"])

        assert outcome.attempts_used == 1

    @pytest.mark.asyncio
    async def test_retryable_failures_exhaust_attempts(self, executor, breaker) -> None:
        """Retryable failures run out after max_attempts and return the last failure."""
        operation = AsyncMock(
            side_effect=[
                TimeoutError("timeout 1"),
                TimeoutError("timeout 2"),
                TimeoutError("timeout 3"),
            ]
        )

        outcome = await _execute(executor, operation)

        assert outcome.success is False
        assert outcome.attempts_used == 3
        assert outcome.error_message == "timeout 3"
        assert breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_before_any_attempt(
        self, executor, breaker
    ) -> None:
        """An open circuit fails fast without touching the failure counter."""
        for _ in range(10):
            breaker.on_failure()
        operation = AsyncMock()

        outcome = await _execute(executor, operation)

        assert outcome.success is False
        assert outcome.circuit_open is True
        assert outcome.attempts_used == 0
        assert "Circuit breaker is open for review calls" in outcome.error_message
        operation.assert_not_awaited()
        assert breaker.failure_count == 10

    @pytest.mark.asyncio
    async def test_circuit_opening_mid_retry_stops_loop(
        self, fake_clock, no_sleep, rng
    ) -> None:
        """Once the shared breaker opens, remaining attempts are not spent."""
        breaker = OperationCircuitBreaker(
            "review",
            CircuitBreakerConfig(failure_threshold=2, base_open_duration_ms=60_000),
            clock=fake_clock,
        )
        executor: RetryExecutor[ReviewResult] = RetryExecutor(
            "review:security#1", breaker, max_attempts=5, sleep=no_sleep, rng=rng
        )
        operation = AsyncMock(side_effect=TimeoutError("timeout"))

        outcome = await _execute(executor, operation)

        assert outcome.attempts_used == 2
        assert outcome.circuit_open is True
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_closes_half_open_circuit(self, executor, breaker, fake_clock) -> None:
        """A successful probe attempt closes the breaker."""
        for _ in range(10):
            breaker.on_failure()
        fake_clock.advance(2)
        operation = AsyncMock(return_value=ReviewResult.succeeded("security", "ok", 1))

        outcome = await _execute(executor, operation)

        assert outcome.success is True
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff_propagates(self, breaker, rng) -> None:
        """Cancellation while sleeping is re-raised, never swallowed."""
        sleep = AsyncMock(side_effect=asyncio.CancelledError())
        executor: RetryExecutor[ReviewResult] = RetryExecutor(
            "review:security#1", breaker, max_attempts=3, sleep=sleep, rng=rng
        )
        operation = AsyncMock(side_effect=TimeoutError("timeout"))

        with pytest.raises(asyncio.CancelledError):
            await _execute(executor, operation)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_half_open_slot(
        self, executor, breaker, fake_clock
    ) -> None:
        """A probe cancelled mid-call lets the next caller probe again."""
        for _ in range(10):
            breaker.on_failure()
        fake_clock.advance(2)
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await _execute(executor, operation)

        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot().consecutive_half_open_failures == 0
        assert breaker.allow_request() is True

    @pytest.mark.asyncio
    async def test_custom_classifier(self, breaker, no_sleep, rng) -> None:
        """The retryability classifier is injectable."""
        executor: RetryExecutor[ReviewResult] = RetryExecutor(
            "review:security#1",
            breaker,
            max_attempts=3,
            is_retryable=lambda message: False,
            sleep=no_sleep,
            rng=rng,
        )
        operation = AsyncMock(side_effect=TimeoutError("timeout"))

        outcome = await _execute(executor, operation)

        assert outcome.attempts_used == 1

    def test_invalid_settings_are_clamped(self, breaker) -> None:
        executor: RetryExecutor[ReviewResult] = RetryExecutor(
            "review", breaker, max_attempts=0, backoff_base_ms=-5, backoff_max_ms=-1
        )
        assert executor.max_attempts == 1
        assert executor.backoff_base_ms == 0.0
        assert executor.backoff_max_ms == 0.0
