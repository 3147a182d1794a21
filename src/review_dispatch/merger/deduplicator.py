"""Two-stage deduplication of findings gathered across passes."""

from __future__ import annotations

import logging
from typing import Iterator

from ..models import Finding, Priority
from .similarity import DEFAULT_SIMILARITY_THRESHOLD, is_near_duplicate, normalize_text

logger = logging.getLogger(__name__)


class FindingDeduplicator:
    """Accumulate findings, folding duplicates into the first occurrence.

    Only findings from different passes fold; two findings reported by the
    same pass are always kept apart. Stage one folds findings whose
    normalized locations are identical. Stage two, reached only when no
    location matched, folds findings whose normalized title and summary are
    near-duplicates. Findings with different non-empty locations are never
    folded, and neither are findings whose known priorities disagree.

    Unstructured fallback findings skip both stages and fold only with
    another fallback whose normalized content is identical.

    First-seen order is preserved, so feeding passes in ascending order
    yields a deterministic result.
    """

    def __init__(self, similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> None:
        self.similarity_threshold = similarity_threshold
        self._findings: list[Finding] = []
        self.folded = 0

    @property
    def findings(self) -> list[Finding]:
        """Return the deduplicated findings in first-seen order."""
        return list(self._findings)

    def add(self, finding: Finding) -> bool:
        """Add one finding, folding it into an existing one if duplicated.

        Returns:
            True if the finding was folded into an existing finding.
        """
        if finding.fallback:
            index = self._find_identical_fallback(finding)
        else:
            index = self._find_location_match(finding)
            if index is None:
                index = self._find_similar(finding)
        if index is None:
            self._findings.append(finding)
            return False

        existing = self._findings[index]
        self._findings[index] = existing.merged_with(finding)
        self.folded += 1
        logger.debug(
            "Folded finding %r (passes %s) into %r",
            finding.title,
            finding.sorted_passes,
            existing.title,
        )
        return True

    def add_all(self, findings: list[Finding]) -> None:
        for finding in findings:
            self.add(finding)

    def _candidates(self, finding: Finding) -> Iterator[tuple[int, Finding]]:
        for index, existing in enumerate(self._findings):
            if existing.fallback != finding.fallback:
                continue
            if finding.source_passes <= existing.source_passes:
                continue
            yield index, existing

    def _find_identical_fallback(self, finding: Finding) -> int | None:
        for index, existing in self._candidates(finding):
            if existing.summary == finding.summary:
                return index
        return None

    def _find_location_match(self, finding: Finding) -> int | None:
        if not finding.location:
            return None
        for index, existing in self._candidates(finding):
            if existing.location != finding.location:
                continue
            if _priorities_conflict(existing.priority, finding.priority):
                continue
            return index
        return None

    def _find_similar(self, finding: Finding) -> int | None:
        text = _comparison_text(finding)
        for index, existing in self._candidates(finding):
            if existing.location and finding.location and existing.location != finding.location:
                continue
            if _priorities_conflict(existing.priority, finding.priority):
                continue
            if is_near_duplicate(_comparison_text(existing), text, self.similarity_threshold):
                return index
        return None


def _comparison_text(finding: Finding) -> str:
    return " ".join(part for part in (normalize_text(finding.title), finding.summary) if part)


def _priorities_conflict(left: Priority, right: Priority) -> bool:
    if left is Priority.UNKNOWN or right is Priority.UNKNOWN:
        return False
    return left is not right
