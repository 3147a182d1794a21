"""Circuit breaker implementation for review dispatch.

Implements the circuit breaker pattern per operation class to stop
hammering an unhealthy completion service.

The circuit breaker has three states:
- CLOSED: Normal operation, failures are counted
- OPEN: Circuit tripped, requests immediately fail
- HALF_OPEN: Testing recovery, a single probe request allowed
"""

from .breaker import CircuitSnapshot, OperationCircuitBreaker
from .exceptions import CircuitBreakerError, CircuitOpenError
from .registry import CircuitBreakerRegistry

__all__ = [
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitSnapshot",
    "OperationCircuitBreaker",
    "CircuitBreakerRegistry",
]
