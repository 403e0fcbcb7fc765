"""Duration helpers. Source of truth is stored timestamps (epoch ms), never interval drift."""

from __future__ import annotations

import math
import time
from typing import Iterable, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def _valid(ts: Optional[float]) -> bool:
    return ts is not None and isinstance(ts, (int, float)) and math.isfinite(ts) and ts > 0


def elapsed_sec(started_at: Optional[int], ended_at: Optional[int] = None, now: Optional[int] = None) -> int:
    """Whole seconds from started_at until ended_at (or now). 0 when started_at is unset."""
    if not _valid(started_at):
        return 0
    end = ended_at if _valid(ended_at) else (now if now is not None else now_ms())
    return max(0, int((end - started_at) // 1000))


def elapsed_since(timestamp: Optional[int], now: Optional[int] = None) -> int:
    """Rest timer: seconds since the last set. Pure derivation from the stored timestamp."""
    if not timestamp:
        return 0
    current = now if now is not None else now_ms()
    return max(0, int((current - timestamp) // 1000))


def compute_duration_sec(started_at: Optional[int], ended_at: Optional[int]) -> int:
    """Persisted session duration, rounded to the nearest second."""
    if not started_at or not ended_at:
        return 0
    # half up
    return max(0, math.floor((ended_at - started_at) / 1000 + 0.5))


def format_duration(seconds: float) -> str:
    """MM:SS under an hour, H:MM from one hour on (no seconds once hours show)."""
    total = max(0, int(seconds or 0))
    if total < 3600:
        return f"{total // 60:02d}:{total % 60:02d}"
    total_minutes = total // 60
    return f"{total_minutes // 60}:{total_minutes % 60:02d}"


def format_rest_time(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_ago(last_set_at: int, now: int) -> str:
    diff = now - last_set_at
    minutes = diff // 60_000
    if minutes < 60:
        return f"{minutes}m ago"
    hours = diff // 3_600_000
    if hours < 24:
        return f"{hours}h ago"
    days = diff // 86_400_000
    if days < 7:
        return f"{days}d ago"
    return f"{diff // 604_800_000}w ago"


def group_last_set_at(timestamps: Iterable[Optional[int]]) -> Optional[int]:
    """Most recent last_set_at among group members; members share one rest context."""
    present = [ts for ts in timestamps if ts is not None]
    return max(present) if present else None
