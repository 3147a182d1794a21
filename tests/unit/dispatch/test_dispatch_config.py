"""Tests for dispatch configuration defaults, clamping and stats."""

from __future__ import annotations

import pytest

from review_dispatch.circuit_breaker_config import CircuitBreakerConfig
from review_dispatch.dispatch import (
    DEFAULT_RESILIENCE,
    DispatchConfig,
    DispatchResult,
    DispatchStats,
    ResilienceConfig,
    RetrySettings,
)
from review_dispatch.models import ReviewResult


class TestDispatchConfig:
    """Tests for DispatchConfig."""

    def test_defaults(self) -> None:
        config = DispatchConfig()
        assert config.parallelism == 4
        assert config.review_passes == 1
        assert config.task_timeout_seconds == 300.0
        assert config.run_timeout_seconds == 1800.0
        assert config.similarity_threshold == 0.66
        assert config.operation_class == "review"
        assert set(config.resilience) == {"review", "summary", "skill"}

    @pytest.mark.parametrize(
        "kwargs,field,expected",
        [
            ({"parallelism": 0}, "parallelism", 4),
            ({"review_passes": -1}, "review_passes", 1),
            ({"task_timeout_seconds": 0}, "task_timeout_seconds", 300.0),
            ({"run_timeout_seconds": -5}, "run_timeout_seconds", 1800.0),
            ({"similarity_threshold": 1.5}, "similarity_threshold", 0.66),
            ({"similarity_threshold": 0.0}, "similarity_threshold", 0.66),
        ],
    )
    def test_invalid_values_fall_back_to_defaults(
        self, kwargs: dict[str, float], field: str, expected: float
    ) -> None:
        assert getattr(DispatchConfig(**kwargs), field) == expected

    def test_run_timeout_can_be_disabled(self) -> None:
        assert DispatchConfig(run_timeout_seconds=None).run_timeout_seconds is None

    def test_resilience_for_unknown_operation_uses_review_settings(self) -> None:
        config = DispatchConfig(resilience={})
        assert config.resilience_for("review") is DEFAULT_RESILIENCE["review"]
        assert config.resilience_for("custom") is DEFAULT_RESILIENCE["review"]

    def test_circuit_configs(self) -> None:
        circuit = CircuitBreakerConfig(failure_threshold=2)
        config = DispatchConfig(resilience={"review": ResilienceConfig(circuit=circuit)})
        assert config.circuit_configs == {"review": circuit}


class TestRetrySettings:
    """Tests for RetrySettings clamping."""

    def test_defaults(self) -> None:
        settings = RetrySettings()
        assert (settings.max_attempts, settings.backoff_base_ms, settings.backoff_max_ms) == (
            3,
            1000,
            8000,
        )

    def test_clamping(self) -> None:
        settings = RetrySettings(max_attempts=0, backoff_base_ms=2000, backoff_max_ms=500)
        assert settings.max_attempts == 3
        assert settings.backoff_max_ms == 2000

    def test_summary_and_skill_back_off_faster(self) -> None:
        assert DEFAULT_RESILIENCE["summary"].retry.backoff_base_ms == 500
        assert DEFAULT_RESILIENCE["skill"].retry.backoff_max_ms == 4000


class TestDispatchStats:
    """Tests for run counters."""

    def test_peak_concurrency(self) -> None:
        stats = DispatchStats(total_tasks=3)
        stats.task_started()
        stats.task_started()
        stats.task_finished()
        stats.task_started()
        assert stats.active == 2
        assert stats.peak_concurrency == 2

    def test_record_counts_outcomes_and_attempts(self) -> None:
        stats = DispatchStats()
        stats.record(ReviewResult.succeeded("a", "ok", 1).with_attempts(2))
        stats.record(ReviewResult.failed("b", "timeout", 1).with_attempts(3))
        assert (stats.succeeded, stats.failed, stats.total_attempts) == (1, 1, 5)

    def test_to_dict(self) -> None:
        stats = DispatchStats(total_tasks=2)
        stats.finish()
        data = stats.to_dict()
        assert data["total_tasks"] == 2
        assert "active" not in data
        assert data["elapsed_seconds"] >= 0


class TestDispatchResult:
    """Tests for DispatchResult helpers."""

    def test_failed_agents(self) -> None:
        result = DispatchResult(
            pass_results=[],
            results=[ReviewResult.succeeded("a", "ok"), ReviewResult.failed("b", "boom")],
            stats=DispatchStats(),
        )
        assert result.all_succeeded is False
        assert result.failed_agents == ["b"]
