"""Circuit breaker registry for managing per-operation-class breakers.

Provides a get-or-create accessor so every task of one operation class
shares a single breaker for the lifetime of a run.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping

from ..circuit_breaker_config import DEFAULT_CIRCUIT_CONFIGS, CircuitBreakerConfig, CircuitState
from .breaker import CircuitSnapshot, Clock, OperationCircuitBreaker

logger = logging.getLogger(__name__)


class CircuitBreakerRegistry:
    """Central registry of operation-class circuit breakers.

    Usage:
        registry = CircuitBreakerRegistry(configs)
        review_breaker = registry.get("review")
        summary_breaker = registry.get("summary")

        for snap in registry.snapshots():
            logger.info("%s: %s", snap.operation, snap.state.value)

    Unknown operation classes fall back to the default configuration.
    """

    def __init__(
        self,
        configs: Mapping[str, CircuitBreakerConfig] | None = None,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            configs: Per-operation-class configuration overrides.
            default_config: Configuration for classes not in ``configs``.
            clock: Time source handed to every breaker created here.
        """
        self._configs: dict[str, CircuitBreakerConfig] = dict(DEFAULT_CIRCUIT_CONFIGS)
        if configs:
            self._configs.update(configs)
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, OperationCircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, operation: str) -> OperationCircuitBreaker:
        """Get or create the breaker for an operation class.

        Args:
            operation: Operation class name (e.g. "review").

        Returns:
            The breaker shared by all tasks of that class.
        """
        with self._lock:
            breaker = self._breakers.get(operation)
            if breaker is None:
                config = self._configs.get(operation, self._default_config)
                breaker = OperationCircuitBreaker(operation, config, clock=self._clock)
                self._breakers[operation] = breaker
                logger.debug(
                    "Created circuit breaker for %s (threshold=%d, open=%dms)",
                    operation,
                    config.failure_threshold,
                    config.base_open_duration_ms,
                )
            return breaker

    def __contains__(self, operation: object) -> bool:
        return operation in self._breakers

    def snapshots(self) -> list[CircuitSnapshot]:
        """Return diagnostics for every breaker created so far."""
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]

    def open_operations(self) -> list[str]:
        """Return the operation classes whose circuit is not closed."""
        return [s.operation for s in self.snapshots() if s.state != CircuitState.CLOSED]

    def reset_all(self) -> int:
        """Reset every breaker to CLOSED.

        Returns:
            Number of breakers that were not closed before the reset.
        """
        with self._lock:
            breakers = list(self._breakers.values())
        reset_count = 0
        for breaker in breakers:
            if not breaker.is_closed:
                reset_count += 1
            breaker.reset()
        if reset_count:
            logger.info("Reset %d circuit breaker(s)", reset_count)
        return reset_count
