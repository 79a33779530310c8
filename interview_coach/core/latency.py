"""
Interview Coach: Session Latency Tracer

Records clock timestamps for the start-up milestones of a session:
  start_requested → media_acquired → first_snapshot → first_delta

and logs the deltas between them.  Timestamps come from the session's
scheduler clock so they line up with snapshot timestamps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("coach.latency")

_MILESTONES = ("start_requested", "media_acquired", "first_snapshot", "first_delta")


@dataclass
class LatencyTrace:
    session_id: str = ""
    start_requested: Optional[float] = None
    media_acquired: Optional[float] = None
    first_snapshot: Optional[float] = None
    first_delta: Optional[float] = None

    def deltas(self) -> Dict[str, Optional[float]]:
        """Milestone deltas in milliseconds (None until both ends exist)."""
        def _delta(a: Optional[float], b: Optional[float]) -> Optional[float]:
            if a is not None and b is not None:
                return round((b - a) * 1000, 1)
            return None

        return {
            "start_to_media_ms": _delta(self.start_requested, self.media_acquired),
            "start_to_first_snapshot_ms": _delta(self.start_requested, self.first_snapshot),
            "start_to_first_delta_ms": _delta(self.start_requested, self.first_delta),
        }

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"session_id": self.session_id}
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts is not None:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d


class LatencyTracer:
    """
    Usage:
        tracer = LatencyTracer("abc123")
        tracer.mark("start_requested", now)
        tracer.mark("first_snapshot", now)   # only the first call counts
    """

    def __init__(self, session_id: str) -> None:
        self._trace = LatencyTrace(session_id=session_id)

    @property
    def trace(self) -> LatencyTrace:
        return self._trace

    def mark(self, milestone: str, now: float) -> None:
        if milestone not in _MILESTONES:
            raise ValueError(f"Unknown latency milestone: {milestone}")
        if getattr(self._trace, milestone) is not None:
            return
        setattr(self._trace, milestone, now)
        if milestone == "start_requested":
            logger.info(f"[{self._trace.session_id}] LATENCY start_requested")
            return
        start = self._trace.start_requested
        since = f"{round((now - start) * 1000, 1)}ms" if start is not None else "n/a"
        logger.info(f"[{self._trace.session_id}] LATENCY {milestone} (start→{milestone}: {since})")

    def reset(self) -> None:
        self._trace = LatencyTrace(session_id=self._trace.session_id)

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
