"""Domain models for review dispatch.

This module defines the core data structures shared by the dispatcher and
the result merger: per-pass and per-agent review results, structured
findings extracted from review output, and the dispatch unit of work.

The pipeline follows this flow:
    agents x passes -> DispatchTask -> ReviewResult (per pass)
        -> merge_by_agent -> ReviewResult (per agent, deduplicated Findings)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Protocol, runtime_checkable


@runtime_checkable
class Invoker(Protocol):
    """Invocation capability for one agent pass.

    Implementations may perform network I/O and are treated as slow and
    unreliable. A failure is signalled by raising; blank text counts as a
    failure too.
    """

    def __call__(self, agent_id: str, pass_index: int) -> Awaitable[str]: ...


class Priority(Enum):
    """Finding priority, ordered from most to least severe."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Return the sort rank; lower is more severe."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> Priority:
        """Parse a free-text priority marker.

        Accepts the bare level ("High"), decorated forms ("**HIGH**",
        "🔴 Critical") and a few common synonyms.

        Args:
            value: Raw priority text.

        Returns:
            The matching Priority, or UNKNOWN.
        """
        if not value:
            return cls.UNKNOWN
        lower = value.lower()
        for token in re.findall(r"[a-z]+", lower):
            if token in _PRIORITY_ALIASES:
                return _PRIORITY_ALIASES[token]
        return cls.UNKNOWN

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank > other.rank


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
    Priority.UNKNOWN: 4,
}

_PRIORITY_ALIASES: dict[str, Priority] = {
    "critical": Priority.CRITICAL,
    "blocker": Priority.CRITICAL,
    "high": Priority.HIGH,
    "major": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "moderate": Priority.MEDIUM,
    "low": Priority.LOW,
    "minor": Priority.LOW,
    "info": Priority.LOW,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReviewResult:
    """Result of one agent pass, or the merged result of an agent.

    Attributes:
        agent_id: Agent that produced the result.
        success: Whether the review produced usable content.
        content: Review text, present on success.
        error_message: Failure reason, present on failure.
        timestamp: When the result was produced (UTC).
        pass_index: 1-based pass number; None for merged per-agent results.
        attempts: Attempts the retry executor spent on this pass.
    """

    agent_id: str
    success: bool
    content: str | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    pass_index: int | None = None
    attempts: int = 0

    @classmethod
    def succeeded(cls, agent_id: str, content: str, pass_index: int | None = None) -> ReviewResult:
        """Build a successful result."""
        return cls(agent_id=agent_id, success=True, content=content, pass_index=pass_index)

    @classmethod
    def failed(
        cls, agent_id: str, error_message: str, pass_index: int | None = None
    ) -> ReviewResult:
        """Build a failed result."""
        return cls(
            agent_id=agent_id, success=False, error_message=error_message, pass_index=pass_index
        )

    def with_attempts(self, attempts: int) -> ReviewResult:
        """Return a copy recording how many attempts were spent."""
        return replace(self, attempts=attempts)

    @property
    def sort_key(self) -> tuple[str, int]:
        """Deterministic grouping key (agent_id, pass_index)."""
        return (self.agent_id, self.pass_index or 0)


@dataclass(frozen=True)
class Finding:
    """One structured issue extracted from a pass's review content.

    Findings are never mutated in place: folding a duplicate produces a new
    Finding carrying the union of both ``source_passes``.

    Attributes:
        title: Heading text of the finding.
        priority: Severity category.
        body: Markdown body below the heading.
        source_passes: Pass indices that reported this finding.
        location: Path/line reference, if the body names one.
        summary: One-line summary, if the body names one.
        fallback: True for the single block built from unstructured content;
            its summary then holds the whole normalized content.
    """

    title: str
    priority: Priority
    body: str
    source_passes: frozenset[int] = frozenset()
    location: str = ""
    summary: str = ""
    fallback: bool = False

    def merged_with(self, other: Finding) -> Finding:
        """Fold a duplicate into this finding, keeping this title and body."""
        return replace(self, source_passes=self.source_passes | other.source_passes)

    @property
    def sorted_passes(self) -> list[int]:
        """Return the source pass indices in ascending order."""
        return sorted(self.source_passes)


@dataclass(frozen=True)
class AgentSpec:
    """Definition of one review agent to dispatch.

    Attributes:
        agent_id: Unique agent name.
        invoke: Invocation capability called once per attempt.
        passes: Passes to run; None uses the configured review_passes.
    """

    agent_id: str
    invoke: Invoker
    passes: int | None = None


@dataclass(frozen=True)
class DispatchTask:
    """One (agent, pass) unit of work, consumed exactly once."""

    agent_id: str
    pass_index: int
    invoke: Invoker
    timeout_seconds: float

    @property
    def label(self) -> str:
        """Return a short label for logs."""
        return f"{self.agent_id}#{self.pass_index}"
