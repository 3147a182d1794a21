"""Root conftest.py for pytest configuration.

Provides --run-slow flag to opt in to slow tests (skipped by default) and
the deterministic time fixtures shared by breaker, retry and dispatch tests.
"""

from __future__ import annotations

import random

import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-slow", action="store_true", default=False, help="Run tests marked @pytest.mark.slow"
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="needs --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, milliseconds: float) -> None:
        self.now += milliseconds / 1000.0


class RecordingSleep:
    """Awaitable no-op sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Create a fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    """Create a sleep replacement that returns immediately."""
    return RecordingSleep()


@pytest.fixture
def rng() -> random.Random:
    """Create a seeded random source for jitter."""
    return random.Random(1234)
