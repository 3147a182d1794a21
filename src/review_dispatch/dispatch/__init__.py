"""Bounded-concurrency dispatch of (agent, pass) review tasks.

This package provides the Dispatcher and its configuration, split into:
- config: DispatchConfig, resilience settings, DispatchStats, DispatchResult
- dispatcher: Dispatcher (semaphore-bounded task execution with retries)
"""

from .config import (
    DEFAULT_RESILIENCE,
    DispatchConfig,
    DispatchResult,
    DispatchStats,
    ResilienceConfig,
    RetrySettings,
)
from .dispatcher import RUN_TIMEOUT_MESSAGE, Dispatcher

__all__ = [
    "DEFAULT_RESILIENCE",
    "RUN_TIMEOUT_MESSAGE",
    "DispatchConfig",
    "DispatchResult",
    "DispatchStats",
    "Dispatcher",
    "ResilienceConfig",
    "RetrySettings",
]
