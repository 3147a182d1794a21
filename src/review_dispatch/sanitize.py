"""Sanitization of review content returned by the completion service.

Strips artifacts that must not reach merged output: chain-of-thought
blocks, active HTML that could execute when a report is rendered,
invisible control characters, and runs of blank lines.
"""

from __future__ import annotations

import html
import re
import unicodedata

MAX_SANITIZE_ITERATIONS = 3

_THINKING_BLOCK = re.compile(
    r"<(thinking|antThinking|reflection|inner_monologue|scratchpad)>.*?</\1>",
    re.DOTALL | re.IGNORECASE,
)
_DETAILS_THINKING = re.compile(
    r"<details>\s*<summary>\s*(?:Thinking|思考|推論).*?</summary>.*?</details>",
    re.DOTALL | re.IGNORECASE,
)
_DANGEROUS_TAGS = "script|iframe|object|embed|form|input|base|link|meta|style"
_DANGEROUS_HTML = re.compile(
    rf"<\s*({_DANGEROUS_TAGS})\b[^>]*>.*?</\s*\1\s*>"
    rf"|<\s*(?:{_DANGEROUS_TAGS})\b[^>]*/?>"
    r"|\bon\w+\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s>]+)"
    r"|(?:javascript|vbscript)\s*:[^\s\"'>]+"
    r"|data\s*:[^,]*;base64",
    re.DOTALL | re.IGNORECASE,
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0e-\x1f\x7f]")
_EXCESSIVE_BLANK_LINES = re.compile(r"\n{3,}")

_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (_THINKING_BLOCK, ""),
    (_DETAILS_THINKING, ""),
    (_DANGEROUS_HTML, ""),
    (_EXCESSIVE_BLANK_LINES, "\n\n"),
)


def _strip_format_chars(text: str) -> str:
    return "".join(ch for ch in text if unicodedata.category(ch) != "Cf")


def sanitize_content(content: str | None) -> str | None:
    """Sanitize one pass's review content.

    Entities are decoded first so encoded payloads cannot slip past the
    HTML rules. Rules are re-applied until the text stops changing, at most
    MAX_SANITIZE_ITERATIONS times, since removing one block can splice a
    new one together.

    Args:
        content: Raw review text; None is passed through.

    Returns:
        The sanitized, stripped text.
    """
    if content is None:
        return None
    result = unicodedata.normalize("NFKC", html.unescape(content))
    result = _strip_format_chars(_CONTROL_CHARS.sub("", result.replace("\r\n", "\n")))
    for _ in range(MAX_SANITIZE_ITERATIONS):
        previous = result
        for pattern, replacement in _RULES:
            result = pattern.sub(replacement, result)
        if result == previous:
            break
    return result.strip()
