"""Text normalization and similarity scoring for finding deduplication.

Two signals are combined by the deduplicator: keyword overlap (at least one
shared non-trivial token) and the Jaccard similarity of character bigram
sets. Neither is sufficient on its own.
"""

from __future__ import annotations

import re

# Tuned so light rewordings of one sentence match while distinct findings
# with similar titles do not. Configurable via [merge] similarity_threshold.
DEFAULT_SIMILARITY_THRESHOLD = 0.66

MIN_KEYWORD_LENGTH = 3

_KEYWORD_PATTERN = re.compile(r"[a-z0-9]+|[\u3040-\u30ff\u4e00-\u9fff]{2,}")
_MARKDOWN_EMPHASIS = re.compile(r"[`*_~]")
_SEPARATORS = re.compile(r"[|/\\\s・]+")

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "with", "from", "into", "onto", "this", "that", "these",
        "those", "are", "was", "were", "been", "being", "has", "have", "had", "not",
        "but", "can", "could", "should", "would", "may", "might", "must", "will",
        "its", "via", "when", "where", "which", "while", "than", "then", "there",
        "use", "used", "uses", "using", "code", "issue", "issues", "problem", "finding",
        "missing", "potential", "possible", "improve", "consider", "line", "file",
        "function", "method", "class", "value", "values", "all", "any", "some", "more",
        "less", "does", "doesn", "don", "isn", "aren", "out", "too", "very",
    }
)


def normalize_text(value: str | None) -> str:
    """Lowercase, strip markdown emphasis markers and collapse whitespace.

    Table pipes, slashes and the CJK middle dot are treated as separators.
    """
    if not value or not value.strip():
        return ""
    text = _MARKDOWN_EMPHASIS.sub("", value.lower())
    return _SEPARATORS.sub(" ", text).strip()


def bigrams(text: str) -> frozenset[str]:
    """Return the set of 2-character substrings of ``text`` with spaces removed."""
    compact = text.replace(" ", "")
    if len(compact) < 2:
        return frozenset({compact}) if compact else frozenset()
    return frozenset(compact[i : i + 2] for i in range(len(compact) - 1))


def jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    """Jaccard similarity |A & B| / |A | B|; 0.0 when either set is empty."""
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def extract_keywords(text: str) -> frozenset[str]:
    """Extract non-trivial keyword tokens from normalized text."""
    if not text:
        return frozenset()
    return frozenset(
        token
        for token in _KEYWORD_PATTERN.findall(text)
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOPWORDS and not token.isdigit()
    )


def shares_keyword(left: str, right: str) -> bool:
    """Check whether two normalized texts share at least one keyword."""
    return not extract_keywords(left).isdisjoint(extract_keywords(right))


def is_near_duplicate(
    left: str,
    right: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> bool:
    """Decide whether two normalized texts describe the same finding.

    Both conditions must hold: a shared keyword, and bigram Jaccard
    similarity strictly above ``threshold``.
    """
    if not left or not right:
        return False
    if not shares_keyword(left, right):
        return False
    return jaccard(bigrams(left), bigrams(right)) > threshold
