"""
Interview Coach: Session Summary

Accumulates every snapshot of a session and, on stop, produces the averages,
a good/ok/poor grade per category and the matching recommendations.  The
summary is a plain dict once serialised; persisting it is somebody else's job.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.models import (
    EmotionMetrics,
    MetricsSnapshot,
    PostureMetrics,
    SessionCounters,
    VoiceMetrics,
)

GOOD_THRESHOLD = 80.0
OK_THRESHOLD = 60.0

RECOMMENDATIONS = {
    "posture": "Work on maintaining better posture and body language.",
    "emotion": "Show more engagement and enthusiasm through facial expressions.",
    "voice": "Focus on speaking more clearly and with better tone.",
}

# Fields averaged into each category grade
GRADED_FIELDS = {
    "posture": ("back_straightness", "head_tilt", "body_lean", "stability"),
    "emotion": ("confidence", "stability", "engagement"),
    "voice": ("clarity", "tone", "volume", "confidence"),
}

_ANGLE_FIELDS = {("posture", "head_tilt"), ("posture", "body_lean")}
_GROUP_FIELDS = {
    "posture": tuple(PostureMetrics.RANGES),
    "emotion": tuple(EmotionMetrics.RANGES),
    "voice": tuple(VoiceMetrics.RANGES),
}


def grade(score: float) -> str:
    if score >= GOOD_THRESHOLD:
        return "good"
    if score >= OK_THRESHOLD:
        return "ok"
    return "poor"


def normalize(group: str, name: str, value: float) -> float:
    """Scale a field to 0–100; angles score as 100 − |degrees|."""
    if (group, name) in _ANGLE_FIELDS:
        score = 100.0 - abs(value)
    elif group == "posture":
        score = value
    else:
        score = value * 100.0
    return max(0.0, min(100.0, score))


@dataclass
class SessionSummary:
    session_id: str = ""
    demo_mode: bool = True
    duration_seconds: float = 0.0
    snapshot_count: int = 0
    averages: Dict[str, Dict[str, float]] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)
    grades: Dict[str, str] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    dominant_emotion: Optional[str] = None
    counters: Dict[str, Any] = field(default_factory=dict)
    telemetry: Dict[str, Any] = field(default_factory=dict)
    latency: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "demo_mode": self.demo_mode,
            "duration_seconds": round(self.duration_seconds, 1),
            "snapshot_count": self.snapshot_count,
            "averages": self.averages,
            "scores": self.scores,
            "grades": self.grades,
            "recommendations": list(self.recommendations),
            "dominant_emotion": self.dominant_emotion,
            "counters": self.counters,
            "telemetry": self.telemetry,
            "latency": self.latency,
        }


class SessionSummaryBuilder:
    def __init__(self) -> None:
        self._sums: Dict[str, Dict[str, float]] = {}
        self._emotions: Counter = Counter()
        self._count = 0
        self.reset()

    @property
    def count(self) -> int:
        return self._count

    def add(self, snapshot: MetricsSnapshot) -> None:
        for group, names in _GROUP_FIELDS.items():
            record = getattr(snapshot, group)
            for name in names:
                self._sums[group][name] += float(getattr(record, name))
        self._emotions[snapshot.emotion.primary_emotion.value] += 1
        self._count += 1

    def reset(self) -> None:
        self._sums = {
            group: {name: 0.0 for name in names} for group, names in _GROUP_FIELDS.items()
        }
        self._emotions = Counter()
        self._count = 0

    def averages(self) -> Dict[str, Dict[str, float]]:
        n = max(self._count, 1)
        return {
            group: {name: round(total / n, 3) for name, total in fields_.items()}
            for group, fields_ in self._sums.items()
        }

    def build(
        self,
        session_id: str = "",
        demo_mode: bool = True,
        duration_seconds: float = 0.0,
        counters: Optional[SessionCounters] = None,
        telemetry: Optional[Dict[str, Any]] = None,
        latency: Optional[Dict[str, Any]] = None,
    ) -> SessionSummary:
        summary = SessionSummary(
            session_id=session_id,
            demo_mode=demo_mode,
            duration_seconds=duration_seconds,
            snapshot_count=self._count,
            counters=counters.to_dict() if counters is not None else {},
            telemetry=telemetry or {},
            latency=latency or {},
        )
        if self._count == 0:
            return summary

        averages = self.averages()
        summary.averages = averages
        summary.dominant_emotion = self._emotions.most_common(1)[0][0]
        for category, names in GRADED_FIELDS.items():
            parts = [normalize(category, name, averages[category][name]) for name in names]
            score = round(sum(parts) / len(parts), 1)
            summary.scores[category] = score
            summary.grades[category] = grade(score)
            if summary.grades[category] == "poor":
                summary.recommendations.append(RECOMMENDATIONS[category])
        return summary
