"""Retry backoff with equal jitter.

The delay for an attempt is drawn uniformly from ``[exp / 2, exp]`` where
``exp = min(cap_ms, base_ms * 2 ** attempt)``. The floor keeps a minimum
spacing between retries while the random half spreads concurrent tasks so
they do not retry in lockstep.
"""

from __future__ import annotations

import random

# 2 ** 62 already exceeds any sane cap; larger shifts only waste work
_MAX_SHIFT = 62


def compute_backoff_ms(
    attempt: int,
    base_ms: float,
    cap_ms: float,
    rng: random.Random | None = None,
) -> float:
    """Compute an equal-jitter delay in milliseconds.

    Args:
        attempt: Zero-based retry number. Values <= 0 behave like 0.
        base_ms: Delay before exponential growth.
        cap_ms: Upper bound on the exponential term.
        rng: Random source (a seeded ``random.Random`` in tests).

    Returns:
        Delay in milliseconds, never above ``cap_ms``.
    """
    base = max(0.0, float(base_ms))
    cap = max(0.0, float(cap_ms))
    shift = min(max(0, attempt), _MAX_SHIFT)
    exponential = min(cap, base * (2**shift))
    half = exponential / 2.0
    source = rng if rng is not None else random
    return half + source.uniform(0.0, half)


def compute_backoff_seconds(
    attempt: int,
    base_ms: float,
    cap_ms: float,
    rng: random.Random | None = None,
) -> float:
    """Same as compute_backoff_ms, converted to seconds for asyncio.sleep."""
    return compute_backoff_ms(attempt, base_ms, cap_ms, rng) / 1000.0
