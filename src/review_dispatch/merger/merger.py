"""Consolidation of multi-pass review results into one result per agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from ..models import ReviewResult
from .deduplicator import FindingDeduplicator
from .formatter import format_merged
from .parser import extract_findings
from .similarity import DEFAULT_SIMILARITY_THRESHOLD

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeStats:
    """Per-agent merge counters, for logging only."""

    agent_id: str
    passes: int
    failed_passes: int
    findings_in: int
    findings_out: int


class ResultMerger:
    """Merge per-pass ReviewResults into exactly one ReviewResult per agent.

    Agents keep the order of their first appearance in the input; within an
    agent, passes are processed in ascending pass index.
    """

    def __init__(self, similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> None:
        self.similarity_threshold = similarity_threshold

    def merge(self, results: Iterable[ReviewResult]) -> list[ReviewResult]:
        groups: dict[str, list[ReviewResult]] = {}
        for result in results:
            groups.setdefault(result.agent_id, []).append(result)

        merged: list[ReviewResult] = []
        for agent_id, group in groups.items():
            group.sort(key=lambda r: r.sort_key)
            if len(group) == 1:
                merged.append(group[0])
                continue
            merged.append(self.merge_agent(agent_id, group))
        return merged

    def merge_agent(self, agent_id: str, passes: list[ReviewResult]) -> ReviewResult:
        """Merge all passes of one agent.

        Args:
            agent_id: The agent being merged.
            passes: The agent's pass results, sorted by pass index.

        Returns:
            The last failure when no pass succeeded, otherwise a successful
            result whose content lists the deduplicated findings.
        """
        successes = [r for r in passes if r.success]
        failures = [r for r in passes if not r.success]
        attempts = sum(r.attempts for r in passes)

        if not successes:
            logger.warning("Agent %s: all %d passes failed", agent_id, len(passes))
            return failures[-1]

        deduplicator = FindingDeduplicator(self.similarity_threshold)
        findings_in = 0
        for result in successes:
            pass_index = result.pass_index if result.pass_index is not None else 1
            findings = extract_findings(result.content, pass_index)
            findings_in += len(findings)
            deduplicator.add_all(findings)

        findings = deduplicator.findings
        stats = MergeStats(
            agent_id=agent_id,
            passes=len(passes),
            failed_passes=len(failures),
            findings_in=findings_in,
            findings_out=len(findings),
        )
        logger.info(
            "Agent %s: merged %d findings from %d passes into %d (%d failed passes)",
            stats.agent_id,
            stats.findings_in,
            stats.passes,
            stats.findings_out,
            stats.failed_passes,
        )

        content = format_merged(findings, failed_passes=len(failures), total_passes=len(passes))
        return ReviewResult(agent_id=agent_id, success=True, content=content, attempts=attempts)


def merge_by_agent(
    results: Iterable[ReviewResult],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[ReviewResult]:
    """Merge a flat list of per-pass results into one result per agent."""
    return ResultMerger(similarity_threshold).merge(results)
