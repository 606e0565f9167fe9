from __future__ import annotations

from datetime import datetime


def now_iso() -> str:
    """Return timezone-aware current local time in ISO format."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


def elapsed_since(start_monotonic: float, end_monotonic: float) -> float:
    """Elapsed seconds between two monotonic clock readings, rounded to ms."""
    return round(max(0.0, end_monotonic - start_monotonic), 3)
