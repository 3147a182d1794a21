"""Generic retry executor with jittered backoff and circuit breaker integration.

Runs one logical operation up to ``max_attempts`` times. Before every
attempt the shared circuit breaker is consulted; each outcome is reported
back to it. Failures are classified as retryable or fatal, and only
retryable ones are retried after an equal-jitter backoff sleep.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from .backoff import compute_backoff_seconds
from .circuit_breaker import CircuitOpenError, OperationCircuitBreaker
from .retry_policy import is_retryable_message, is_transient_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[object]]

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_MAX_MS = 8000


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    """Result of one RetryExecutor invocation.

    Attributes:
        success: Whether the final attempt succeeded.
        value: The successful result, or the failure-shaped result.
        error_message: Error text when the outcome is a failure.
        attempts_used: Attempts actually executed (circuit rejections excluded).
        circuit_open: True when the call was rejected by an open circuit.
    """

    success: bool
    value: T | None
    error_message: str | None
    attempts_used: int
    circuit_open: bool = False


class RetryExecutor(Generic[T]):
    """Execute an async operation with retries, backoff and a shared breaker.

    Usage:
        executor = RetryExecutor("review", breaker, max_attempts=3)
        outcome = await executor.execute(
            lambda: invoke(agent_id, pass_index),
            error_mapper=lambda exc: failed_result(str(exc)),
            is_success=lambda r: r.success,
            error_message=lambda r: r.error_message,
        )
    """

    def __init__(
        self,
        operation_name: str,
        circuit_breaker: OperationCircuitBreaker,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_ms: float = DEFAULT_BACKOFF_BASE_MS,
        backoff_max_ms: float = DEFAULT_BACKOFF_MAX_MS,
        *,
        is_retryable: Callable[[str | None], bool] = is_retryable_message,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            operation_name: Name used in diagnostics (usually "<class>:<agent>#<pass>").
            circuit_breaker: Breaker shared by the operation class.
            max_attempts: Total attempts including the first one.
            backoff_base_ms: Backoff base delay.
            backoff_max_ms: Backoff cap.
            is_retryable: Classifier deciding whether a failure message is transient.
            sleep: Awaitable sleep used between attempts.
            rng: Random source for jitter.
        """
        self.operation_name = operation_name
        self.circuit_breaker = circuit_breaker
        self.max_attempts = max(1, max_attempts)
        self.backoff_base_ms = max(0.0, backoff_base_ms)
        self.backoff_max_ms = max(self.backoff_base_ms, backoff_max_ms)
        self._is_retryable = is_retryable
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        error_mapper: Callable[[Exception], T],
        is_success: Callable[[T], bool],
        error_message: Callable[[T], str | None],
        non_retryable_markers: Sequence[str] = (),
    ) -> AttemptOutcome[T]:
        """Run the operation until it succeeds, fails fatally, or attempts run out.

        Args:
            operation: Zero-argument coroutine factory; one call per attempt.
            error_mapper: Maps a raised exception to a failure-shaped result.
            is_success: Extracts the success flag from a result.
            error_message: Extracts the error message from a result.
            non_retryable_markers: Extra substrings marking a failed result fatal.

        Returns:
            AttemptOutcome describing the final attempt.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled.
        """
        attempt = 0
        while True:
            if not self.circuit_breaker.allow_request():
                error = CircuitOpenError(
                    self.circuit_breaker.operation, self.circuit_breaker.time_until_retry()
                )
                logger.warning("%s rejected: %s", self.operation_name, error)
                return AttemptOutcome(
                    success=False,
                    value=error_mapper(error),
                    error_message=str(error),
                    attempts_used=attempt,
                    circuit_open=True,
                )

            attempt += 1
            try:
                result = await operation()
            except asyncio.CancelledError:
                self.circuit_breaker.on_cancelled()
                raise
            except Exception as exc:
                value = error_mapper(exc)
                message = error_message(value) or str(exc) or type(exc).__name__
                retryable = is_transient_exception(
                    exc, non_retryable_markers
                ) and self._is_retryable(message)
                kind = "exception"
            else:
                if is_success(result):
                    self.circuit_breaker.on_success()
                    if attempt > 1:
                        logger.info(
                            "%s succeeded on attempt %d/%d",
                            self.operation_name,
                            attempt,
                            self.max_attempts,
                        )
                    return AttemptOutcome(
                        success=True, value=result, error_message=None, attempts_used=attempt
                    )
                value = result
                message = error_message(result) or ""
                retryable = self._classify_result(message, non_retryable_markers)
                kind = "failure"

            self.circuit_breaker.on_failure()

            if not retryable:
                logger.error(
                    "%s fatal %s on attempt %d/%d: %s",
                    self.operation_name,
                    kind,
                    attempt,
                    self.max_attempts,
                    message,
                )
                return AttemptOutcome(
                    success=False, value=value, error_message=message, attempts_used=attempt
                )

            if attempt >= self.max_attempts:
                logger.error(
                    "%s failed on final attempt %d/%d: %s",
                    self.operation_name,
                    attempt,
                    self.max_attempts,
                    message,
                )
                return AttemptOutcome(
                    success=False, value=value, error_message=message, attempts_used=attempt
                )

            delay = compute_backoff_seconds(
                attempt - 1, self.backoff_base_ms, self.backoff_max_ms, self._rng
            )
            logger.warning(
                "%s %s on attempt %d/%d: %s. Retrying in %.2fs...",
                self.operation_name,
                kind,
                attempt,
                self.max_attempts,
                message,
                delay,
            )
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                logger.info("%s cancelled during retry backoff", self.operation_name)
                raise

    def _classify_result(self, message: str, non_retryable_markers: Sequence[str]) -> bool:
        lower = message.lower()
        if any(m and m.strip() and m.lower() in lower for m in non_retryable_markers):
            return False
        return self._is_retryable(message)
