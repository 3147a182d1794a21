"""Dispatcher configuration, resilience settings and run statistics.

Defines the frozen configuration dataclasses consumed by the Dispatcher and
the per-run statistics and result containers it produces.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Mapping

from ..circuit_breaker import CircuitSnapshot
from ..circuit_breaker_config import (
    DEFAULT_CIRCUIT_CONFIGS,
    CircuitBreakerConfig,
    OperationClass,
)
from ..merger.similarity import DEFAULT_SIMILARITY_THRESHOLD
from ..models import ReviewResult

# Execution defaults
DEFAULT_PARALLELISM = 4
DEFAULT_REVIEW_PASSES = 1
DEFAULT_TASK_TIMEOUT_SECONDS = 300.0  # 5 min per agent attempt
DEFAULT_RUN_TIMEOUT_SECONDS = 1800.0  # 30 min for the whole dispatch


@dataclass(frozen=True)
class RetrySettings:
    """Retry budget and backoff bounds for one operation class."""

    max_attempts: int = 3
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 8000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            object.__setattr__(self, "max_attempts", RetrySettings.max_attempts)
        if self.backoff_base_ms <= 0:
            object.__setattr__(self, "backoff_base_ms", RetrySettings.backoff_base_ms)
        if self.backoff_max_ms < self.backoff_base_ms:
            object.__setattr__(self, "backoff_max_ms", self.backoff_base_ms)


@dataclass(frozen=True)
class ResilienceConfig:
    """Circuit breaker and retry settings for one operation class."""

    circuit: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)


REVIEW_RESILIENCE = ResilienceConfig(
    circuit=DEFAULT_CIRCUIT_CONFIGS[OperationClass.REVIEW.value],
    retry=RetrySettings(max_attempts=3, backoff_base_ms=1000, backoff_max_ms=8000),
)
SUMMARY_RESILIENCE = ResilienceConfig(
    circuit=DEFAULT_CIRCUIT_CONFIGS[OperationClass.SUMMARY.value],
    retry=RetrySettings(max_attempts=3, backoff_base_ms=500, backoff_max_ms=4000),
)
SKILL_RESILIENCE = ResilienceConfig(
    circuit=DEFAULT_CIRCUIT_CONFIGS[OperationClass.SKILL.value],
    retry=RetrySettings(max_attempts=3, backoff_base_ms=500, backoff_max_ms=4000),
)

DEFAULT_RESILIENCE: dict[str, ResilienceConfig] = {
    OperationClass.REVIEW.value: REVIEW_RESILIENCE,
    OperationClass.SUMMARY.value: SUMMARY_RESILIENCE,
    OperationClass.SKILL.value: SKILL_RESILIENCE,
}


def _default_resilience() -> dict[str, ResilienceConfig]:
    return dict(DEFAULT_RESILIENCE)


@dataclass(frozen=True)
class DispatchConfig:
    """Configuration for one dispatch run.

    Attributes:
        parallelism: Maximum tasks executing concurrently.
        review_passes: Passes per agent unless the agent overrides it.
        task_timeout_seconds: Budget for one attempt of one task, measured
            from when the attempt starts executing.
        run_timeout_seconds: Budget for the whole dispatch; None disables it.
        similarity_threshold: Bigram Jaccard threshold for fuzzy dedup.
        operation_class: Breaker and retry settings to use for tasks.
        resilience: Per-operation-class resilience settings.
    """

    parallelism: int = DEFAULT_PARALLELISM
    review_passes: int = DEFAULT_REVIEW_PASSES
    task_timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS
    run_timeout_seconds: float | None = DEFAULT_RUN_TIMEOUT_SECONDS
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    operation_class: str = OperationClass.REVIEW.value
    resilience: Mapping[str, ResilienceConfig] = field(default_factory=_default_resilience)

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            object.__setattr__(self, "parallelism", DEFAULT_PARALLELISM)
        if self.review_passes < 1:
            object.__setattr__(self, "review_passes", DEFAULT_REVIEW_PASSES)
        if self.task_timeout_seconds <= 0:
            object.__setattr__(self, "task_timeout_seconds", DEFAULT_TASK_TIMEOUT_SECONDS)
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            object.__setattr__(self, "run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS)
        if not 0.0 < self.similarity_threshold <= 1.0:
            object.__setattr__(self, "similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD)

    def resilience_for(self, operation: str) -> ResilienceConfig:
        """Return the resilience settings for an operation class."""
        return self.resilience.get(operation) or DEFAULT_RESILIENCE.get(
            operation, REVIEW_RESILIENCE
        )

    @property
    def circuit_configs(self) -> dict[str, CircuitBreakerConfig]:
        """Return the breaker configuration of every configured operation class."""
        return {name: settings.circuit for name, settings in self.resilience.items()}


@dataclass
class DispatchStats:
    """Counters for one dispatch run, for logging and reporting."""

    total_tasks: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0  # tasks, not attempts
    circuit_rejected: int = 0
    total_attempts: int = 0
    active: int = 0
    peak_concurrency: int = 0
    start_time: float = field(default_factory=time.monotonic)
    elapsed_seconds: float = 0.0

    def task_started(self) -> None:
        self.active += 1
        self.peak_concurrency = max(self.peak_concurrency, self.active)

    def task_finished(self) -> None:
        self.active -= 1

    def record(self, result: ReviewResult) -> None:
        """Count a finished task's result."""
        self.total_attempts += result.attempts
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1

    def finish(self) -> None:
        self.elapsed_seconds = time.monotonic() - self.start_time

    def to_dict(self) -> dict[str, object]:
        return {
            "total_tasks": self.total_tasks,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "circuit_rejected": self.circuit_rejected,
            "total_attempts": self.total_attempts,
            "peak_concurrency": self.peak_concurrency,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class DispatchResult:
    """Result of a full dispatch-and-merge run.

    Attributes:
        pass_results: Per-(agent, pass) results in (agent, pass) order.
        results: One merged result per agent, in agent order.
        stats: Run counters.
        circuits: Breaker snapshots taken after the run.
    """

    pass_results: list[ReviewResult]
    results: list[ReviewResult]
    stats: DispatchStats
    circuits: list[CircuitSnapshot] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed_agents(self) -> list[str]:
        """Return ids of agents whose merged result is a failure."""
        return [r.agent_id for r in self.results if not r.success]
