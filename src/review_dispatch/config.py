"""TOML configuration loading for review dispatch.

Reads ``.review-dispatch.toml`` (or an explicit file) into a frozen
DispatchConfig. Every numeric setting must be positive; zero or negative
values fall back to the default for that setting with a warning.

Example file:

    [execution]
    parallelism = 4
    review_passes = 2
    task_timeout_seconds = 300
    run_timeout_seconds = 1800

    [resilience.review]
    failure_threshold = 5
    base_open_duration_ms = 30000
    max_attempts = 3
    backoff_base_ms = 1000
    backoff_max_ms = 8000
    escalation_factor = 2.0

    [merge]
    similarity_threshold = 0.66
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from .circuit_breaker_config import CircuitBreakerConfig
from .dispatch.config import (
    DEFAULT_PARALLELISM,
    DEFAULT_RESILIENCE,
    DEFAULT_REVIEW_PASSES,
    DEFAULT_RUN_TIMEOUT_SECONDS,
    DEFAULT_TASK_TIMEOUT_SECONDS,
    REVIEW_RESILIENCE,
    DispatchConfig,
    ResilienceConfig,
    RetrySettings,
)
from .merger.similarity import DEFAULT_SIMILARITY_THRESHOLD

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".review-dispatch.toml"


def find_config(start: Path | None = None) -> Path | None:
    """Walk up from start to find the nearest .review-dispatch.toml.

    Args:
        start: Starting directory. Defaults to cwd.

    Returns:
        Path of the config file, or None if not found.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(path: Path | None = None) -> DispatchConfig:
    """Load dispatch configuration from a TOML file.

    Args:
        path: Config file. None returns the built-in defaults.

    Returns:
        Parsed DispatchConfig.

    Raises:
        FileNotFoundError: If ``path`` is given but does not exist.
        ValueError: On invalid TOML, non-table sections or non-numeric values.
    """
    if path is None:
        return DispatchConfig()
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    content = path.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ValueError(msg) from exc

    config = parse_config(data, source=str(path))
    logger.debug("Loaded configuration from %s", path)
    return config


def parse_config(data: dict[str, Any], source: str = "<config>") -> DispatchConfig:
    """Parse raw TOML data into a DispatchConfig.

    Unknown keys are ignored for forward compatibility.
    """
    execution = _Section(_table(data, "execution", source), "execution", source)
    merge = _Section(_table(data, "merge", source), "merge", source)
    resilience_data = _table(data, "resilience", source)

    resilience = dict(DEFAULT_RESILIENCE)
    for operation, raw in resilience_data.items():
        if not isinstance(raw, dict):
            msg = f"{source}: [resilience.{operation}] must be a table"
            raise ValueError(msg)
        base = DEFAULT_RESILIENCE.get(operation, REVIEW_RESILIENCE)
        section = _Section(raw, f"resilience.{operation}", source)
        resilience[operation] = _parse_resilience(section, base)

    threshold = merge.number("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD, maximum=1.0)

    return DispatchConfig(
        parallelism=int(execution.number("parallelism", DEFAULT_PARALLELISM)),
        review_passes=int(execution.number("review_passes", DEFAULT_REVIEW_PASSES)),
        task_timeout_seconds=execution.number(
            "task_timeout_seconds", DEFAULT_TASK_TIMEOUT_SECONDS
        ),
        run_timeout_seconds=execution.number("run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS),
        similarity_threshold=threshold,
        resilience=resilience,
    )


def _parse_resilience(section: _Section, base: ResilienceConfig) -> ResilienceConfig:
    circuit = CircuitBreakerConfig(
        failure_threshold=int(
            section.number("failure_threshold", base.circuit.failure_threshold)
        ),
        base_open_duration_ms=int(
            section.number("base_open_duration_ms", base.circuit.base_open_duration_ms)
        ),
        escalation_factor=section.number(
            "escalation_factor", base.circuit.escalation_factor, minimum_exclusive=1.0
        ),
        max_escalation_exponent=int(
            section.number("max_escalation_exponent", base.circuit.max_escalation_exponent)
        ),
    )

    backoff_base_ms = int(section.number("backoff_base_ms", base.retry.backoff_base_ms))
    backoff_max_ms = int(section.number("backoff_max_ms", base.retry.backoff_max_ms))
    if backoff_max_ms < backoff_base_ms:
        logger.warning(
            "%s: %s.backoff_max_ms=%d is below backoff_base_ms; raising it to %d",
            section.source,
            section.name,
            backoff_max_ms,
            backoff_base_ms,
        )
        backoff_max_ms = backoff_base_ms

    retry = RetrySettings(
        max_attempts=int(section.number("max_attempts", base.retry.max_attempts)),
        backoff_base_ms=backoff_base_ms,
        backoff_max_ms=backoff_max_ms,
    )
    return ResilienceConfig(circuit=circuit, retry=retry)


class _Section:
    """One TOML table plus the names used in diagnostics."""

    def __init__(self, data: dict[str, Any], name: str, source: str) -> None:
        self.data = data
        self.name = name
        self.source = source

    def number(
        self,
        key: str,
        default: Any,
        *,
        minimum_exclusive: float = 0.0,
        maximum: float | None = None,
    ) -> Any:
        """Return a numeric setting, falling back to ``default`` when out of range.

        Raises:
            ValueError: If the value is not a number.
        """
        value = self.data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            msg = f"{self.source}: {self.name}.{key} must be a number, got {value!r}"
            raise ValueError(msg)
        if value <= minimum_exclusive or (maximum is not None and value > maximum):
            logger.warning(
                "%s: %s.%s=%s is out of range; using default %s",
                self.source,
                self.name,
                key,
                value,
                default,
            )
            return default
        return value


def _table(data: dict[str, Any], name: str, source: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        msg = f"{source}: [{name}] section must be a table"
        raise ValueError(msg)
    return section


def render_config(config: DispatchConfig) -> str:
    """Render a DispatchConfig as TOML text."""
    run_timeout = config.run_timeout_seconds
    lines = [
        "[execution]",
        f"parallelism = {config.parallelism}",
        f"review_passes = {config.review_passes}",
        f"task_timeout_seconds = {config.task_timeout_seconds:g}",
    ]
    if run_timeout is not None:
        lines.append(f"run_timeout_seconds = {run_timeout:g}")
    lines.append("")

    for operation in sorted(config.resilience):
        settings = config.resilience[operation]
        lines.extend(
            [
                f"[resilience.{operation}]",
                f"failure_threshold = {settings.circuit.failure_threshold}",
                f"base_open_duration_ms = {settings.circuit.base_open_duration_ms}",
                f"escalation_factor = {float(settings.circuit.escalation_factor)}",
                f"max_escalation_exponent = {settings.circuit.max_escalation_exponent}",
                f"max_attempts = {settings.retry.max_attempts}",
                f"backoff_base_ms = {settings.retry.backoff_base_ms}",
                f"backoff_max_ms = {settings.retry.backoff_max_ms}",
                "",
            ]
        )

    lines.extend(["[merge]", f"similarity_threshold = {config.similarity_threshold}", ""])
    return "\n".join(lines)
