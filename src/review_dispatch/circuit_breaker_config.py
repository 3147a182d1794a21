"""Circuit breaker configuration for review dispatch.

This module defines the circuit state enum and the configuration dataclass
shared by every breaker. One breaker exists per operation class ("review",
"summary", "skill"), each with its own thresholds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CircuitState(Enum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"  # Normal operation - requests allowed
    OPEN = "open"  # Circuit tripped - requests blocked
    HALF_OPEN = "half_open"  # Testing recovery - one probe in flight


class OperationClass(str, Enum):
    """Well-known operation classes that get their own breaker."""

    REVIEW = "review"
    SUMMARY = "summary"
    SKILL = "skill"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for an operation-class circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures before opening the circuit.
        base_open_duration_ms: Initial time the circuit stays open.
        escalation_factor: Growth factor applied to the open duration after
            each consecutive failed half-open probe.
        max_escalation_exponent: Cap on the escalation exponent, so the open
            duration stops growing at base * factor ** exponent.
    """

    failure_threshold: int = 5
    base_open_duration_ms: int = 30_000
    escalation_factor: float = 2.0
    max_escalation_exponent: int = 8

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            object.__setattr__(self, "failure_threshold", 1)
        if self.base_open_duration_ms < 1:
            object.__setattr__(self, "base_open_duration_ms", 1)
        if self.escalation_factor <= 1.0:
            object.__setattr__(self, "escalation_factor", 2.0)
        if self.max_escalation_exponent < 1:
            object.__setattr__(self, "max_escalation_exponent", 1)

    def open_duration_ms(self, half_open_failures: int) -> float:
        """Return the open duration after ``half_open_failures`` failed probes."""
        exponent = min(max(0, half_open_failures), self.max_escalation_exponent)
        return self.base_open_duration_ms * self.escalation_factor**exponent


# Defaults per operation class
REVIEW_CIRCUIT_CONFIG = CircuitBreakerConfig(failure_threshold=5, base_open_duration_ms=30_000)
SUMMARY_CIRCUIT_CONFIG = CircuitBreakerConfig(failure_threshold=3, base_open_duration_ms=20_000)
SKILL_CIRCUIT_CONFIG = CircuitBreakerConfig(failure_threshold=3, base_open_duration_ms=20_000)

DEFAULT_CIRCUIT_CONFIGS: dict[str, CircuitBreakerConfig] = {
    OperationClass.REVIEW.value: REVIEW_CIRCUIT_CONFIG,
    OperationClass.SUMMARY.value: SUMMARY_CIRCUIT_CONFIG,
    OperationClass.SKILL.value: SKILL_CIRCUIT_CONFIG,
}

# Default configuration instance for convenience
DEFAULT_CONFIG = REVIEW_CIRCUIT_CONFIG
