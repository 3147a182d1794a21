"""Operation-class circuit breaker implementation.

Tracks consecutive failures for one class of remote operation and fails
fast once a threshold is reached, admitting a single probe after the open
period to test whether the dependency has recovered. Failed probes escalate
the open duration so an unhealthy dependency is not hammered.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable

from ..circuit_breaker_config import CircuitBreakerConfig, CircuitState, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class _BreakerState:
    """Immutable breaker fields, swapped as a whole on every transition."""

    state: CircuitState
    consecutive_failures: int
    consecutive_half_open_failures: int
    open_until: float | None
    probe_in_flight: bool
    open_duration_ms: float
    closed_calls_in_flight: int = 0


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of a breaker, for diagnostics only."""

    operation: str
    state: CircuitState
    consecutive_failures: int
    consecutive_half_open_failures: int
    half_open_probe_in_flight: bool
    current_open_duration_ms: float
    remaining_open_seconds: float

    def to_dict(self) -> dict[str, object]:
        """Serialize for logging and CLI output."""
        return {
            "operation": self.operation,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_half_open_failures": self.consecutive_half_open_failures,
            "half_open_probe_in_flight": self.half_open_probe_in_flight,
            "current_open_duration_ms": self.current_open_duration_ms,
            "remaining_open_seconds": round(self.remaining_open_seconds, 3),
        }


class OperationCircuitBreaker:
    """Circuit breaker shared by every task of one operation class.

    All entry points are safe to call concurrently from asyncio tasks or
    threads. State lives in a frozen ``_BreakerState`` that is replaced
    under a short lock; no I/O or awaiting happens while the lock is held.

    Calls admitted while CLOSED are counted until they report. While
    HALF_OPEN, results are charged to those earlier calls first, so only
    the probe's own result can close or re-open the circuit.

    Usage:
        breaker = OperationCircuitBreaker("review", config)

        if breaker.allow_request():
            try:
                result = await call()
                breaker.on_success()
            except asyncio.CancelledError:
                breaker.on_cancelled()
                raise
            except Exception:
                breaker.on_failure()

    Attributes:
        operation: Operation class name (e.g. "review").
        config: Thresholds and open-duration settings.
    """

    def __init__(
        self,
        operation: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the breaker in the CLOSED state.

        Args:
            operation: Operation class name used in logs and errors.
            config: Configuration settings. Uses DEFAULT_CONFIG if None.
            clock: Monotonic time source in seconds. Defaults to time.monotonic.
        """
        self._operation = operation
        self._config = config or DEFAULT_CONFIG
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._s = self._closed_state()

    @property
    def operation(self) -> str:
        """Return the operation class name."""
        return self._operation

    @property
    def config(self) -> CircuitBreakerConfig:
        """Return the breaker configuration."""
        return self._config

    @property
    def state(self) -> CircuitState:
        """Return the current circuit state."""
        return self._s.state

    @property
    def failure_count(self) -> int:
        """Return the current consecutive failure count."""
        return self._s.consecutive_failures

    @property
    def is_open(self) -> bool:
        """Check if circuit is currently open (blocking requests)."""
        return self._s.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is currently closed (normal operation)."""
        return self._s.state == CircuitState.CLOSED

    def _closed_state(self, closed_calls_in_flight: int = 0) -> _BreakerState:
        return _BreakerState(
            state=CircuitState.CLOSED,
            consecutive_failures=0,
            consecutive_half_open_failures=0,
            open_until=None,
            probe_in_flight=False,
            open_duration_ms=float(self._config.base_open_duration_ms),
            closed_calls_in_flight=closed_calls_in_flight,
        )

    def allow_request(self) -> bool:
        """Check if a request should be allowed through the circuit.

        Once the open period has elapsed, exactly one caller is admitted as
        the half-open probe; every other caller is rejected until that probe
        reports success, failure or cancellation.

        Returns:
            True if the request is allowed, False if blocked.
        """
        with self._lock:
            s = self._s
            if s.state == CircuitState.CLOSED:
                self._s = replace(s, closed_calls_in_flight=s.closed_calls_in_flight + 1)
                return True
            if s.state == CircuitState.HALF_OPEN:
                return False
            if s.open_until is not None and self._clock() < s.open_until:
                return False
            self._s = replace(s, state=CircuitState.HALF_OPEN, probe_in_flight=True)

        logger.info("Circuit %s entering HALF_OPEN for recovery probe", self._operation)
        return True

    def on_success(self) -> None:
        """Record a success; closes the circuit and resets all counters."""
        with self._lock:
            s = self._s
            remaining = max(0, s.closed_calls_in_flight - 1)
            if s.state == CircuitState.HALF_OPEN and s.closed_calls_in_flight > 0:
                self._s = replace(s, closed_calls_in_flight=remaining)
                return
            self._s = self._closed_state(remaining)

        if s.state != CircuitState.CLOSED:
            logger.info("Circuit %s CLOSED after successful recovery", self._operation)

    def on_failure(self) -> None:
        """Record a failure and potentially open (or re-open) the circuit."""
        opened_for_ms: float | None = None
        from_half_open = False

        with self._lock:
            s = self._s
            now = self._clock()
            remaining = max(0, s.closed_calls_in_flight - 1)
            if s.state == CircuitState.HALF_OPEN and s.closed_calls_in_flight == 0:
                half_open_failures = s.consecutive_half_open_failures + 1
                duration_ms = self._config.open_duration_ms(half_open_failures)
                self._s = replace(
                    s,
                    state=CircuitState.OPEN,
                    consecutive_failures=s.consecutive_failures + 1,
                    consecutive_half_open_failures=half_open_failures,
                    open_until=now + duration_ms / 1000.0,
                    probe_in_flight=False,
                    open_duration_ms=duration_ms,
                )
                opened_for_ms = duration_ms
                from_half_open = True
            elif s.state == CircuitState.CLOSED:
                failures = s.consecutive_failures + 1
                if failures >= self._config.failure_threshold:
                    duration_ms = float(self._config.base_open_duration_ms)
                    self._s = replace(
                        s,
                        state=CircuitState.OPEN,
                        consecutive_failures=failures,
                        consecutive_half_open_failures=0,
                        open_until=now + duration_ms / 1000.0,
                        open_duration_ms=duration_ms,
                        closed_calls_in_flight=remaining,
                    )
                    opened_for_ms = duration_ms
                else:
                    self._s = replace(
                        s, consecutive_failures=failures, closed_calls_in_flight=remaining
                    )
            else:
                # Straggler admitted while CLOSED; the open window and any probe stand.
                self._s = replace(
                    s,
                    consecutive_failures=s.consecutive_failures + 1,
                    closed_calls_in_flight=remaining,
                )

        if opened_for_ms is None:
            logger.debug(
                "Circuit %s failure %d/%d",
                self._operation,
                self._s.consecutive_failures,
                self._config.failure_threshold,
            )
        elif from_half_open:
            logger.warning(
                "Circuit %s probe failed, re-OPENED for %.0fms (half-open failures=%d)",
                self._operation,
                opened_for_ms,
                self._s.consecutive_half_open_failures,
            )
        else:
            logger.warning(
                "Circuit %s OPENED for %.0fms after %d consecutive failures",
                self._operation,
                opened_for_ms,
                self._s.consecutive_failures,
            )

    def on_cancelled(self) -> None:
        """Release an admitted call that was cancelled before it reported.

        A cancelled probe returns the circuit to OPEN with its elapsed
        window, so the next caller is admitted as a fresh probe. No failure
        is recorded.
        """
        with self._lock:
            s = self._s
            if s.closed_calls_in_flight > 0:
                self._s = replace(s, closed_calls_in_flight=s.closed_calls_in_flight - 1)
                return
            if s.state != CircuitState.HALF_OPEN:
                return
            self._s = replace(s, state=CircuitState.OPEN, probe_in_flight=False)

        logger.info("Circuit %s probe cancelled; next caller may probe", self._operation)

    def time_until_retry(self) -> float:
        """Get seconds until the circuit will admit a recovery probe."""
        s = self._s
        if s.state != CircuitState.OPEN or s.open_until is None:
            return 0.0
        return max(0.0, s.open_until - self._clock())

    def snapshot(self) -> CircuitSnapshot:
        """Return a consistent diagnostic view of the breaker."""
        s = self._s
        remaining = 0.0
        if s.state == CircuitState.OPEN and s.open_until is not None:
            remaining = max(0.0, s.open_until - self._clock())
        return CircuitSnapshot(
            operation=self._operation,
            state=s.state,
            consecutive_failures=s.consecutive_failures,
            consecutive_half_open_failures=s.consecutive_half_open_failures,
            half_open_probe_in_flight=s.probe_in_flight,
            current_open_duration_ms=s.open_duration_ms,
            remaining_open_seconds=remaining,
        )

    def reset(self) -> None:
        """Manually reset the circuit to closed state.

        This is typically used after confirming the dependency has recovered.
        """
        with self._lock:
            previous = self._s.state
            self._s = self._closed_state(self._s.closed_calls_in_flight)
        if previous != CircuitState.CLOSED:
            logger.info("Circuit %s manually reset to CLOSED", self._operation)
