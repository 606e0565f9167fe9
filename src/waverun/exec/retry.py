from __future__ import annotations

from collections.abc import Sequence


def backoff_for_attempt(
    attempt_idx: int,
    backoff: Sequence[float] = (),
    *,
    base_sec: float = 1.0,
    max_sec: float = 60.0,
) -> float:
    """
    Return backoff seconds for retry attempt index.

    attempt_idx is zero-based for retries: 0 means first retry wait. Explicit
    per-task waits win, repeating the last value; otherwise the base delay
    doubles per attempt up to max_sec.
    """
    if backoff:
        return float(backoff[min(attempt_idx, len(backoff) - 1)])
    return float(min(max_sec, base_sec * 2**attempt_idx))
