"""Retryable versus fatal failure classification.

Transient signals (timeouts, rate limiting, 5xx, connection resets) are
worth retrying. Validation, authentication and malformed-input failures are
surfaced on first occurrence. Fatal markers always win over transient ones.
"""

from __future__ import annotations

import asyncio
import re
from typing import Iterable

NON_RETRYABLE_MARKERS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid token",
    "authentication",
    "invalid model",
    "bad request",
    "validation",
    "missing required",
    "malformed",
    "invalid input",
)

TRANSIENT_MARKERS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "temporarily",
    "rate limit",
    "too many requests",
    "connection reset",
    "connection",
    "network",
    "unavailable",
    "empty response",
)

_FATAL_STATUS = re.compile(r"\b(?:400|401|403|404|422)\b")
_TRANSIENT_STATUS = re.compile(r"\b(?:429|5\d\d)\b")


def _contains_any(value: str, markers: Iterable[str]) -> bool:
    return any(marker and marker.strip() and marker.lower() in value for marker in markers)


def is_fatal_message(message: str | None, extra_markers: Iterable[str] = ()) -> bool:
    """Check whether a failure message names a non-retryable condition."""
    if not message or not message.strip():
        return False
    lower = message.lower()
    return (
        _contains_any(lower, NON_RETRYABLE_MARKERS)
        or _FATAL_STATUS.search(lower) is not None
        or _contains_any(lower, extra_markers)
    )


def is_transient_message(message: str | None) -> bool:
    """Check whether a failure message carries a transient-fault signal."""
    if not message or not message.strip():
        return False
    lower = message.lower()
    return _contains_any(lower, TRANSIENT_MARKERS) or _TRANSIENT_STATUS.search(lower) is not None


def is_retryable_message(message: str | None, extra_markers: Iterable[str] = ()) -> bool:
    """Decide whether a failed result with this message should be retried.

    A blank message is treated as retryable; anything not naming a fatal
    condition is retryable.

    Args:
        message: Error message of the failed result.
        extra_markers: Caller-supplied additional non-retryable markers.

    Returns:
        True if another attempt is worthwhile.
    """
    return not is_fatal_message(message, extra_markers)


def is_transient_exception(exc: BaseException, extra_markers: Iterable[str] = ()) -> bool:
    """Decide whether a raised exception should be retried.

    Timeouts and I/O errors are transient unless their message says
    otherwise. Any other exception is transient only if its message carries
    a transient signal.
    """
    message = str(exc) or type(exc).__name__
    if is_fatal_message(message, extra_markers):
        return False
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, OSError)):
        return True
    return is_transient_message(message)
