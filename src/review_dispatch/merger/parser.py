"""Finding extraction from review pass content.

Review output is expected as numbered markdown headings, one per finding:

    ### 1. SQL injection in login handler

    | Field | Value |
    |-------|-------|
    | **Priority** | High |
    | **Location** | src/auth.py:42 |
    | **Summary** | User input is concatenated into the query |

Field rows may also be written as ``**Priority**: High`` lines. Content that
is only a "no findings" sentinel yields nothing; other unstructured content
becomes a single fallback finding.
"""

from __future__ import annotations

import logging
import re

from ..models import Finding, Priority
from .similarity import normalize_text

logger = logging.getLogger(__name__)

FINDING_HEADER = re.compile(r"^#{2,4}\s+(\d+)[.)]\s+(.+?)\s*$", re.MULTILINE)

PRIORITY_FIELDS = ("priority", "severity", "優先度")
LOCATION_FIELDS = ("location", "file", "where", "該当箇所")
SUMMARY_FIELDS = ("summary", "description", "指摘の概要")

FALLBACK_TITLE = "Review notes"
NO_FINDINGS_TEXT = "No findings."

_TITLE_PRIORITY = re.compile(r"^\s*[\[(]\s*([A-Za-z]+)\s*[\])]\s*")

_NO_FINDINGS_SENTINELS = frozenset(
    {
        "no findings",
        "no findings found",
        "no issues",
        "no issues found",
        "no problems found",
        "nothing to report",
        "none",
        "lgtm",
        "指摘事項なし",
    }
)


def _field_patterns(names: tuple[str, ...]) -> tuple[re.Pattern[str], re.Pattern[str]]:
    alternation = "|".join(re.escape(name) for name in names)
    table = re.compile(
        rf"^\|\s*\**\s*(?:{alternation})\s*\**\s*\|\s*(.*?)\s*\|\s*$",
        re.IGNORECASE | re.MULTILINE,
    )
    line = re.compile(
        rf"^\s*(?:[-*]\s+)?\**\s*(?:{alternation})\s*\**\s*:\s*\**\s*(.+?)\s*\**\s*$",
        re.IGNORECASE | re.MULTILINE,
    )
    return table, line


_PRIORITY_PATTERNS = _field_patterns(PRIORITY_FIELDS)
_LOCATION_PATTERNS = _field_patterns(LOCATION_FIELDS)
_SUMMARY_PATTERNS = _field_patterns(SUMMARY_FIELDS)


def extract_field(body: str, patterns: tuple[re.Pattern[str], re.Pattern[str]]) -> str:
    """Return the first table-row or key-value match in ``body``, or ""."""
    for pattern in patterns:
        match = pattern.search(body)
        if match:
            return match.group(1).strip()
    return ""


def is_no_findings(content: str | None) -> bool:
    """Check whether content is a no-findings sentinel."""
    if not content:
        return True
    text = re.sub(r"[#>*_`]", "", content).strip().lower().rstrip(".!。")
    return text in _NO_FINDINGS_SENTINELS


def extract_findings(content: str | None, pass_index: int) -> list[Finding]:
    """Extract structured findings from one pass's review content.

    Args:
        content: Review text of a successful pass.
        pass_index: 1-based pass number recorded as provenance.

    Returns:
        Findings in document order. Empty for blank or sentinel content.
    """
    if content is None or not content.strip() or is_no_findings(content):
        return []

    headers = list(FINDING_HEADER.finditer(content))
    if not headers:
        logger.debug("Pass %d has no finding headings; using fallback block", pass_index)
        return [_fallback_finding(content, pass_index)]

    findings: list[Finding] = []
    for i, header in enumerate(headers):
        body_end = headers[i + 1].start() if i + 1 < len(headers) else len(content)
        body = _strip_separator(content[header.end() : body_end])
        if not body:
            continue
        findings.append(_build_finding(header.group(2).strip(), body, pass_index))
    return findings


def _build_finding(title: str, body: str, pass_index: int) -> Finding:
    priority_text = extract_field(body, _PRIORITY_PATTERNS)
    if not priority_text:
        title_match = _TITLE_PRIORITY.match(title)
        if title_match:
            priority_text = title_match.group(1)
    return Finding(
        title=title,
        priority=Priority.parse(priority_text),
        body=body,
        source_passes=frozenset({pass_index}),
        location=normalize_text(extract_field(body, _LOCATION_PATTERNS)),
        summary=normalize_text(extract_field(body, _SUMMARY_PATTERNS)),
    )


def _fallback_finding(content: str, pass_index: int) -> Finding:
    return Finding(
        title=FALLBACK_TITLE,
        priority=Priority.UNKNOWN,
        body=content.strip(),
        source_passes=frozenset({pass_index}),
        summary=normalize_text(content),
        fallback=True,
    )


def _strip_separator(body: str) -> str:
    # Horizontal rules between findings belong to the layout, not the body
    body = body.strip()
    while body.endswith("---"):
        body = body[:-3].rstrip()
    return body
