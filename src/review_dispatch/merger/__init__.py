"""Multi-pass result merging with near-duplicate elimination."""

from .deduplicator import FindingDeduplicator
from .merger import MergeStats, ResultMerger, merge_by_agent
from .parser import extract_findings, is_no_findings
from .similarity import DEFAULT_SIMILARITY_THRESHOLD, is_near_duplicate, normalize_text

__all__ = [
    "DEFAULT_SIMILARITY_THRESHOLD",
    "FindingDeduplicator",
    "MergeStats",
    "ResultMerger",
    "extract_findings",
    "is_near_duplicate",
    "is_no_findings",
    "merge_by_agent",
    "normalize_text",
]
