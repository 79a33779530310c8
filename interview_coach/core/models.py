"""
Interview Coach: Data Models

Dataclasses for every piece of data flowing through the analysis loop.

Metric records are frozen and range-checked on construction, so a snapshot
that exists is a snapshot that satisfies its declared ranges.  Derivation
clamps before it constructs; anything else that builds one out of range gets
a ValueError.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple

import numpy as np


# ---------------------------------------------------------------------------
# Ranges
# ---------------------------------------------------------------------------

PERCENT_RANGE: Tuple[float, float] = (0.0, 100.0)
ANGLE_RANGE: Tuple[float, float] = (0.0, 15.0)   # degrees
UNIT_RANGE: Tuple[float, float] = (0.0, 1.0)


class Emotion(str, Enum):
    """Fixed label set produced by the face heuristics."""
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    SURPRISED = "surprised"


EMOTION_LABELS: Tuple[Emotion, ...] = tuple(Emotion)


def _validate_ranges(record: Any) -> None:
    for name, (lo, hi) in record.RANGES.items():
        value = getattr(record, name)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValueError(f"{type(record).__name__}.{name} must be a finite number, got {value!r}")
        if value < lo or value > hi:
            raise ValueError(
                f"{type(record).__name__}.{name}={value} outside [{lo}, {hi}]"
            )


# ---------------------------------------------------------------------------
# Per-tick metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PostureMetrics:
    back_straightness: float = 0.0   # 0–100
    head_tilt: float = 0.0           # degrees
    body_lean: float = 0.0           # degrees
    stability: float = 0.0           # 0–100

    RANGES: ClassVar[Dict[str, Tuple[float, float]]] = {
        "back_straightness": PERCENT_RANGE,
        "head_tilt": ANGLE_RANGE,
        "body_lean": ANGLE_RANGE,
        "stability": PERCENT_RANGE,
    }

    def __post_init__(self) -> None:
        _validate_ranges(self)


@dataclass(frozen=True)
class EmotionMetrics:
    primary_emotion: Emotion = Emotion.NEUTRAL
    confidence: float = 0.0
    stability: float = 0.0
    engagement: float = 0.0

    RANGES: ClassVar[Dict[str, Tuple[float, float]]] = {
        "confidence": UNIT_RANGE,
        "stability": UNIT_RANGE,
        "engagement": UNIT_RANGE,
    }

    def __post_init__(self) -> None:
        # Accept plain strings; unknown labels raise ValueError
        object.__setattr__(self, "primary_emotion", Emotion(self.primary_emotion))
        _validate_ranges(self)


@dataclass(frozen=True)
class VoiceMetrics:
    clarity: float = 0.0
    speech_rate: float = 0.0   # normalised pace, not WPM
    tone: float = 0.0
    volume: float = 0.0
    confidence: float = 0.0

    RANGES: ClassVar[Dict[str, Tuple[float, float]]] = {
        "clarity": UNIT_RANGE,
        "speech_rate": UNIT_RANGE,
        "tone": UNIT_RANGE,
        "volume": UNIT_RANGE,
        "confidence": UNIT_RANGE,
    }

    def __post_init__(self) -> None:
        _validate_ranges(self)


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    One immutable reading of the candidate, produced once per successful tick.

    source values:
      • "demo" — synthetic generator
      • "live" — MediaPipe landmarks + microphone heuristics
    """
    posture: PostureMetrics = field(default_factory=PostureMetrics)
    emotion: EmotionMetrics = field(default_factory=EmotionMetrics)
    voice: VoiceMetrics = field(default_factory=VoiceMetrics)
    timestamp: float = 0.0
    source: str = "demo"

    def with_voice(self, voice: VoiceMetrics) -> "MetricsSnapshot":
        return replace(self, voice=voice)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["emotion"]["primary_emotion"] = self.emotion.primary_emotion.value
        return d


# Fields compared by the delta tracker: (group, field, multiplier to 0–100).
# Degree fields are not percentages and are left out.
TRACKED_FIELDS: Tuple[Tuple[str, str, float], ...] = (
    ("posture", "back_straightness", 1.0),
    ("posture", "stability", 1.0),
    ("emotion", "confidence", 100.0),
    ("emotion", "stability", 100.0),
    ("emotion", "engagement", 100.0),
    ("voice", "clarity", 100.0),
    ("voice", "speech_rate", 100.0),
    ("voice", "tone", 100.0),
    ("voice", "volume", 100.0),
    ("voice", "confidence", 100.0),
)


@dataclass(frozen=True)
class DeltaRecord:
    """Percentage-point change per tracked field over one delta window."""
    changes: Mapping[str, float] = field(default_factory=dict)
    window_seconds: float = 5.0
    timestamp: float = 0.0
    baseline_timestamp: Optional[float] = None

    @classmethod
    def zero(cls, timestamp: float, window_seconds: float) -> "DeltaRecord":
        return cls(
            changes={f"{group}.{name}": 0.0 for group, name, _ in TRACKED_FIELDS},
            window_seconds=window_seconds,
            timestamp=timestamp,
        )

    def get(self, path: str) -> float:
        return self.changes[path]

    @property
    def is_zero(self) -> bool:
        return all(v == 0.0 for v in self.changes.values())

    def to_dict(self) -> Dict[str, Any]:
        nested: Dict[str, Dict[str, float]] = {}
        for path, value in self.changes.items():
            group, name = path.split(".", 1)
            nested.setdefault(group, {})[name] = value
        return {
            "changes": nested,
            "window_seconds": self.window_seconds,
            "timestamp": self.timestamp,
            "baseline_timestamp": self.baseline_timestamp,
        }


# ---------------------------------------------------------------------------
# Sampler output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyntheticReading:
    """Demo-mode values, unvalidated; derivation clamps them."""
    back_straightness: float
    head_tilt: float
    body_lean: float
    posture_stability: float
    emotion: str
    emotion_confidence: float
    emotion_stability: float
    engagement: float
    clarity: float
    speech_rate: float
    tone: float
    volume: float
    voice_confidence: float


@dataclass(frozen=True)
class RawFrameData:
    """
    Everything derivation needs for one tick, passed explicitly.

    Live readings carry landmark arrays (pose: (33, 4) x/y/z/visibility,
    face: (468|478, 3) normalised x/y/z) plus the previous successful arrays
    for the movement-based stability scores.
    """
    timestamp: float
    source: str = "demo"
    reading: Optional[SyntheticReading] = None
    pose: Optional[np.ndarray] = None
    face: Optional[np.ndarray] = None
    previous_pose: Optional[np.ndarray] = None
    previous_face: Optional[np.ndarray] = None
    audio: Optional[np.ndarray] = None
    sample_rate: int = 16000
    spoken_word: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return self.reading is not None or (self.audio is not None and self.audio.size > 0)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

@dataclass
class SessionCounters:
    """Session-cumulative speech counters; reset on every start."""
    filler_words: int = 0
    words_spoken: int = 0
    transcript: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionClock:
    running: bool = False
    elapsed_seconds: float = 0.0

    @property
    def formatted(self) -> str:
        total = int(self.elapsed_seconds)
        return f"{total // 60}:{total % 60:02d}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "formatted": self.formatted,
        }


@dataclass
class SessionTelemetry:
    """Per-session counters, never crashes the session."""
    session_id: str = ""
    demo_mode: bool = True
    lifecycle_state: str = "stopped"
    ticks_started: int = 0
    snapshots_produced: int = 0
    ticks_missed: int = 0
    ticks_dropped: int = 0
    deltas_emitted: int = 0
    fatal_errors: int = 0
    last_tick_latency_ms: float = 0.0

    def reset_counters(self) -> None:
        for f in fields(self):
            if f.name in ("session_id", "demo_mode", "lifecycle_state"):
                continue
            setattr(self, f.name, f.default)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
