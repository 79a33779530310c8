"""
Interview Coach: Rolling Snapshot & Delta Tracker

Keeps the baseline snapshot for the current delta window and turns
(baseline, current) into a DeltaRecord when the slow timer fires.

    IDLE ──observe(s)──▶ TRACKING ──close_window(c)──▶ TRACKING (baseline = c)
      ▲                                                     │
      └──────────────────────── reset() ────────────────────┘

Every tracked field is scaled to 0–100 before subtracting, so a change is
a percentage-point difference bounded by [-100, 100].  No division anywhere.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Optional

from ..core.config import sampler_cfg
from ..core.models import TRACKED_FIELDS, DeltaRecord, MetricsSnapshot

logger = logging.getLogger("coach.delta")

DELTA_LIMIT = 100.0


class TrackerState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"


def _scaled(snapshot: MetricsSnapshot, group: str, name: str, multiplier: float) -> float:
    return float(getattr(getattr(snapshot, group), name)) * multiplier


def compute_delta(
    current: MetricsSnapshot,
    previous: MetricsSnapshot,
    timestamp: float = 0.0,
    window_seconds: float = sampler_cfg.delta_window,
) -> DeltaRecord:
    changes: Dict[str, float] = {}
    for group, name, multiplier in TRACKED_FIELDS:
        diff = _scaled(current, group, name, multiplier) - _scaled(previous, group, name, multiplier)
        changes[f"{group}.{name}"] = round(max(-DELTA_LIMIT, min(DELTA_LIMIT, diff)), 2)
    return DeltaRecord(
        changes=changes,
        window_seconds=window_seconds,
        timestamp=timestamp,
        baseline_timestamp=previous.timestamp,
    )


class DeltaTracker:
    def __init__(self, window_seconds: float = sampler_cfg.delta_window, label: str = "") -> None:
        self._window = window_seconds
        self._label = label
        self._state = TrackerState.IDLE
        self._baseline: Optional[MetricsSnapshot] = None

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def baseline(self) -> Optional[MetricsSnapshot]:
        return self._baseline

    def observe(self, snapshot: MetricsSnapshot) -> None:
        """Only the first snapshot after IDLE becomes the baseline."""
        if self._state is TrackerState.IDLE:
            self._baseline = snapshot
            self._state = TrackerState.TRACKING
            logger.debug(f"{self._label}Delta baseline captured at t={snapshot.timestamp:.2f}")

    def close_window(self, current: Optional[MetricsSnapshot], now: float) -> DeltaRecord:
        """
        Emit the record for the window ending now and slide the baseline.

        IDLE, no current snapshot, or a stalled window (current is still the
        baseline) all produce an all-zero record.
        """
        if self._state is TrackerState.IDLE or current is None or self._baseline is None:
            return DeltaRecord.zero(now, self._window)

        if current is self._baseline or current == self._baseline:
            record = DeltaRecord.zero(now, self._window)
        else:
            record = compute_delta(current, self._baseline, now, self._window)
        self._baseline = current
        return record

    def reset(self) -> None:
        self._baseline = None
        self._state = TrackerState.IDLE
