"""Circuit breaker exception classes."""

from __future__ import annotations


class CircuitBreakerError(Exception):
    """Base exception for circuit breaker errors."""

    pass


class CircuitOpenError(CircuitBreakerError):
    """Raised when an operation class is known unhealthy and the call is rejected."""

    def __init__(self, operation: str, retry_after_seconds: float) -> None:
        self.operation = operation
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit breaker is open for {operation} calls "
            f"(retry in {retry_after_seconds:.1f}s)"
        )
