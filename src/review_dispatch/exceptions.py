"""Exceptions for the dispatch and invocation layers.

Circuit breaker errors live in ``review_dispatch.circuit_breaker.exceptions``.
"""

from __future__ import annotations


class ReviewDispatchError(Exception):
    """Base exception for all review-dispatch errors."""

    pass


class DispatchError(ReviewDispatchError):
    """Raised when a dispatch request is invalid.

    This exception is raised when:
    - No agents are supplied
    - An agent id is blank or duplicated
    - An agent requests fewer than one pass
    """

    pass


class InvocationError(ReviewDispatchError):
    """Raised by invokers when the completion call fails."""

    pass


class EmptyResponseError(InvocationError):
    """Raised when an invocation returns blank content."""

    def __init__(self, agent_id: str, pass_index: int) -> None:
        self.agent_id = agent_id
        self.pass_index = pass_index
        super().__init__(f"Agent {agent_id} pass {pass_index} returned an empty response")


class TaskTimeoutError(TimeoutError):
    """Raised when one dispatch attempt exceeds its time budget."""

    def __init__(self, label: str, timeout_seconds: float) -> None:
        self.label = label
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Review timed out after {timeout_seconds:g}s")
