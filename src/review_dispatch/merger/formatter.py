"""Markdown rendering of merged findings."""

from __future__ import annotations

from ..models import Finding
from .parser import NO_FINDINGS_TEXT

SEPARATOR = "\n\n---\n\n"


def format_finding(number: int, finding: Finding) -> str:
    """Render one finding under a renumbered heading.

    Pass provenance is shown only when more than one pass reported it.
    """
    lines = [f"### {number}. {finding.title}", ""]
    if len(finding.source_passes) > 1:
        passes = ", ".join(str(p) for p in finding.sorted_passes)
        lines.extend([f"> detected in passes: {passes}", ""])
    lines.append(finding.body)
    return "\n".join(lines)


def format_failure_note(failed_passes: int, total_passes: int) -> str:
    return (
        f"> **Note**: {failed_passes} pass(es) failed out of {total_passes}; "
        "findings above come from the successful passes only."
    )


def format_merged(findings: list[Finding], failed_passes: int = 0, total_passes: int = 0) -> str:
    """Render merged findings as one markdown document.

    Args:
        findings: Deduplicated findings in output order.
        failed_passes: Passes of this agent that failed.
        total_passes: Passes of this agent that ran.

    Returns:
        Markdown text; "No findings." when nothing survived.
    """
    if findings:
        body = SEPARATOR.join(format_finding(i, f) for i, f in enumerate(findings, start=1))
    else:
        body = NO_FINDINGS_TEXT
    if failed_passes > 0:
        body = body + SEPARATOR + format_failure_note(failed_passes, total_passes)
    return body
