"""Review Dispatch.

This package runs a fixed set of review agents against a target, each for
one or more passes, under bounded concurrency with per-operation-class
circuit breakers and jittered retries, and merges every agent's passes into
one deduplicated result.
"""

from __future__ import annotations

from .backoff import compute_backoff_ms, compute_backoff_seconds
from .circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitSnapshot,
    OperationCircuitBreaker,
)
from .circuit_breaker_config import CircuitBreakerConfig, CircuitState, OperationClass
from .config import find_config, load_config
from .dispatch import DispatchConfig, Dispatcher, DispatchResult, DispatchStats
from .exceptions import (
    DispatchError,
    EmptyResponseError,
    InvocationError,
    ReviewDispatchError,
    TaskTimeoutError,
)
from .merger import merge_by_agent
from .models import AgentSpec, Finding, Invoker, Priority, ReviewResult
from .retry_executor import AttemptOutcome, RetryExecutor

__version__ = "0.1.0"

__all__ = [
    "AgentSpec",
    "AttemptOutcome",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitSnapshot",
    "CircuitState",
    "DispatchConfig",
    "DispatchError",
    "DispatchResult",
    "DispatchStats",
    "Dispatcher",
    "EmptyResponseError",
    "Finding",
    "InvocationError",
    "Invoker",
    "OperationCircuitBreaker",
    "OperationClass",
    "Priority",
    "RetryExecutor",
    "ReviewDispatchError",
    "ReviewResult",
    "TaskTimeoutError",
    "compute_backoff_ms",
    "compute_backoff_seconds",
    "find_config",
    "load_config",
    "merge_by_agent",
]
