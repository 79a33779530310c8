"""
Interview Coach: Tick Health & Staleness (policy)

The sampler reports what happened to each tick; this module decides what the
UI should be told.  A run of missed ticks never becomes an error.  It only
flips the exposed snapshot to "stale" once the last good reading is older
than the configured window.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .config import sampler_cfg

logger = logging.getLogger("coach.health")

# Log a warning once per this many consecutive misses
MISS_WARN_EVERY: int = 50


class TickHealth:
    """Counts hits / misses / drops and answers "is the snapshot stale?"."""

    def __init__(self, stale_after: float = sampler_cfg.stale_after, label: str = "") -> None:
        self._stale_after = stale_after
        self._label = label
        self._last_hit_at: Optional[float] = None
        self._consecutive_misses = 0
        self._longest_miss_streak = 0

    # ── Signal setters (called by the lifecycle controller) ────────────

    def report_hit(self, now: float) -> None:
        self._last_hit_at = now
        self._consecutive_misses = 0

    def report_miss(self, channel: str) -> None:
        self._consecutive_misses += 1
        self._longest_miss_streak = max(self._longest_miss_streak, self._consecutive_misses)
        if self._consecutive_misses % MISS_WARN_EVERY == 0:
            logger.warning(
                f"{self._label}{self._consecutive_misses} consecutive missed ticks "
                f"(last channel: {channel})"
            )

    def reset(self) -> None:
        self._last_hit_at = None
        self._consecutive_misses = 0
        self._longest_miss_streak = 0

    # ── Decisions ───────────────────────────────────────────────────────

    def is_stale(self, now: float) -> bool:
        if self._last_hit_at is None:
            return self._consecutive_misses > 0
        return (now - self._last_hit_at) > self._stale_after

    @property
    def consecutive_misses(self) -> int:
        return self._consecutive_misses

    def diagnostics(self, now: float) -> Dict[str, Any]:
        return {
            "stale": self.is_stale(now),
            "consecutive_misses": self._consecutive_misses,
            "longest_miss_streak": self._longest_miss_streak,
            "last_hit_age_s": (
                round(now - self._last_hit_at, 2) if self._last_hit_at is not None else None
            ),
        }
