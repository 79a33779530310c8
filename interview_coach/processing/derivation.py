"""
Interview Coach: Metric Derivation

`derive(raw)` maps one RawFrameData to a MetricsSnapshot.  It is a pure
function: no module state, no clock reads, the previous landmarks it needs
for movement scores travel inside `raw`.

Live readings use MediaPipe landmark layouts:
  • Pose      — 33 points, normalised x/y/z + visibility
  • Face mesh — 468 points, 478 with refined iris

Every value is clamped into its declared range before the record is built,
so NaN or wild landmarks can never produce an invalid snapshot.
"""

from __future__ import annotations

import math
from typing import Dict, Optional

import numpy as np

from ..core.errors import NoDetectionError
from ..core.models import (
    ANGLE_RANGE,
    EMOTION_LABELS,
    PERCENT_RANGE,
    Emotion,
    EmotionMetrics,
    MetricsSnapshot,
    PostureMetrics,
    RawFrameData,
    SyntheticReading,
    VoiceMetrics,
)
from .audio import analyze_voice

# -- Pose landmark indices ---------------------------------------------------
POSE_NOSE = 0
POSE_LEFT_EYE, POSE_RIGHT_EYE = 2, 5
POSE_LEFT_EAR, POSE_RIGHT_EAR = 7, 8
POSE_LEFT_SHOULDER, POSE_RIGHT_SHOULDER = 11, 12
POSE_LEFT_HIP, POSE_RIGHT_HIP = 23, 24
POSE_POINTS = 33
MIN_VISIBILITY = 0.5

# -- Face mesh landmark indices ----------------------------------------------
FACE_NOSE_TIP = 1
FACE_LIP_TOP, FACE_LIP_BOTTOM = 13, 14
FACE_MOUTH_LEFT, FACE_MOUTH_RIGHT = 61, 291
FACE_LEFT_EYE_OUTER, FACE_LEFT_EYE_INNER = 33, 133
FACE_RIGHT_EYE_INNER, FACE_RIGHT_EYE_OUTER = 362, 263
FACE_LEFT_EYE_TOP, FACE_LEFT_EYE_BOTTOM = 159, 145
FACE_RIGHT_EYE_TOP, FACE_RIGHT_EYE_BOTTOM = 386, 374
FACE_LEFT_BROW, FACE_RIGHT_BROW = 105, 334
FACE_LEFT_CHEEK, FACE_RIGHT_CHEEK = 234, 454
FACE_LEFT_IRIS, FACE_RIGHT_IRIS = 468, 473
FACE_MESH_POINTS = 468
FACE_MESH_POINTS_WITH_IRIS = 478

# Brow-to-eye gap (over face width) of a relaxed face
BROW_REST = 0.09
# Stability used when there is no previous reading to compare against
FIRST_POSTURE_STABILITY = 90.0
FIRST_FACE_STABILITY = 0.9
ENGAGEMENT_FLOOR = 0.2

_EPS = 1e-6


def _bounded(value: float, lo: float, hi: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        return lo
    return min(hi, max(lo, value))


def _clip01(value: float) -> float:
    return _bounded(value, 0.0, 1.0)


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(math.hypot(a[0] - b[0], a[1] - b[1]))


def _line_angle_deg(a: np.ndarray, b: np.ndarray) -> float:
    """Angle of segment a→b against the horizontal, folded into [0, 90]."""
    angle = abs(math.degrees(math.atan2(b[1] - a[1], b[0] - a[0])))
    return min(angle, 180.0 - angle)


def _sanitize(points: Optional[np.ndarray], min_rows: int, channel: str) -> np.ndarray:
    if points is None:
        raise NoDetectionError(channel)
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] < min_rows or arr.shape[1] < 2:
        raise NoDetectionError(channel, f"Malformed {channel} landmarks: shape {arr.shape}")
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


def _previous(points: Optional[np.ndarray], like: np.ndarray) -> Optional[np.ndarray]:
    if points is None:
        return None
    arr = np.asarray(points, dtype=np.float64)
    if arr.shape != like.shape:
        return None
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


# ═══════════════════════════════════════════════════════════════════════════
# Posture
# ═══════════════════════════════════════════════════════════════════════════

def _visible(pose: np.ndarray, idx: int) -> bool:
    return pose.shape[1] < 4 or pose[idx, 3] >= MIN_VISIBILITY


def derive_posture(pose: np.ndarray, previous_pose: Optional[np.ndarray] = None) -> PostureMetrics:
    ls, rs, nose = pose[POSE_LEFT_SHOULDER], pose[POSE_RIGHT_SHOULDER], pose[POSE_NOSE]

    # Level shoulders and a head centred over them read as a straight back
    level_score = _bounded(100.0 - abs(ls[1] - rs[1]) * 500.0, *PERCENT_RANGE)
    shoulder_cx = (ls[0] + rs[0]) / 2
    spine_score = _bounded(100.0 - abs(nose[0] - shoulder_cx) * 300.0, *PERCENT_RANGE)
    back = 0.5 * level_score + 0.5 * spine_score

    if not (_visible(pose, POSE_LEFT_EYE) and _visible(pose, POSE_RIGHT_EYE)) and (
        _visible(pose, POSE_LEFT_EAR) and _visible(pose, POSE_RIGHT_EAR)
    ):
        tilt = _line_angle_deg(pose[POSE_LEFT_EAR], pose[POSE_RIGHT_EAR])
    else:
        tilt = _line_angle_deg(pose[POSE_LEFT_EYE], pose[POSE_RIGHT_EYE])

    mid_shoulder = (ls[:2] + rs[:2]) / 2
    if _visible(pose, POSE_LEFT_HIP) and _visible(pose, POSE_RIGHT_HIP):
        mid_hip = (pose[POSE_LEFT_HIP][:2] + pose[POSE_RIGHT_HIP][:2]) / 2
        dx, dy = mid_shoulder - mid_hip
        lean = math.degrees(math.atan2(abs(dx), abs(dy))) if (dx or dy) else 0.0
    else:
        lean = _line_angle_deg(ls, rs)

    prev = _previous(previous_pose, pose)
    if prev is None:
        stability = FIRST_POSTURE_STABILITY
    else:
        prev_mid = (prev[POSE_LEFT_SHOULDER][:2] + prev[POSE_RIGHT_SHOULDER][:2]) / 2
        disp = float(np.linalg.norm(mid_shoulder - prev_mid))
        stability = 100.0 - (disp - 0.002) * (100.0 / 0.03)

    return PostureMetrics(
        back_straightness=round(_bounded(back, *PERCENT_RANGE), 1),
        head_tilt=round(_bounded(tilt, *ANGLE_RANGE), 1),
        body_lean=round(_bounded(lean, *ANGLE_RANGE), 1),
        stability=round(_bounded(stability, *PERCENT_RANGE), 1),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Emotion
# ═══════════════════════════════════════════════════════════════════════════

def _face_width(face: np.ndarray) -> float:
    width = _dist(face[FACE_LEFT_CHEEK], face[FACE_RIGHT_CHEEK])
    if width < _EPS:
        width = _dist(face[FACE_LEFT_EYE_OUTER], face[FACE_RIGHT_EYE_OUTER])
    return max(width, _EPS)


def emotion_scores(face: np.ndarray) -> Dict[Emotion, float]:
    """Per-label scores in [0, 1]; neutral sits at a fixed 0.5 baseline."""
    width = _face_width(face)
    corners_y = (face[FACE_MOUTH_LEFT][1] + face[FACE_MOUTH_RIGHT][1]) / 2
    lip_center_y = (face[FACE_LIP_TOP][1] + face[FACE_LIP_BOTTOM][1]) / 2
    # Image y grows downwards: corners above the lip centre → positive
    smile = (lip_center_y - corners_y) / width
    mouth_open = abs(face[FACE_LIP_BOTTOM][1] - face[FACE_LIP_TOP][1]) / width
    brow_gap = (
        (face[FACE_LEFT_EYE_TOP][1] - face[FACE_LEFT_BROW][1])
        + (face[FACE_RIGHT_EYE_TOP][1] - face[FACE_RIGHT_BROW][1])
    ) / 2 / width

    return {
        Emotion.NEUTRAL: 0.5,
        Emotion.HAPPY: _clip01(smile * 15.0),
        Emotion.SAD: _clip01(-smile * 15.0),
        Emotion.ANGRY: _clip01((BROW_REST - brow_gap) * 20.0),
        Emotion.SURPRISED: _clip01(mouth_open * 4.0) * _clip01(0.5 + (brow_gap - BROW_REST) * 20.0),
    }


def _eye_contact(face: np.ndarray) -> float:
    if face.shape[0] >= FACE_MESH_POINTS_WITH_IRIS:
        offsets = []
        for iris, inner, outer in (
            (FACE_LEFT_IRIS, FACE_LEFT_EYE_INNER, FACE_LEFT_EYE_OUTER),
            (FACE_RIGHT_IRIS, FACE_RIGHT_EYE_INNER, FACE_RIGHT_EYE_OUTER),
        ):
            centre = (face[inner][:2] + face[outer][:2]) / 2
            eye_w = max(_dist(face[inner], face[outer]), _EPS)
            offsets.append(_dist(face[iris], centre) / eye_w)
        # Iris a quarter eye-width off centre counts as looking away
        return _clip01(1.0 - (sum(offsets) / len(offsets)) / 0.25)

    # No iris: judge head yaw by nose symmetry between the cheeks
    nose_x = face[FACE_NOSE_TIP][0]
    d_left = abs(nose_x - face[FACE_LEFT_CHEEK][0])
    d_right = abs(face[FACE_RIGHT_CHEEK][0] - nose_x)
    asym = abs(d_left - d_right) / max(d_left + d_right, _EPS)
    return _clip01(1.0 - asym * 2.0)


def derive_emotion(face: np.ndarray, previous_face: Optional[np.ndarray] = None) -> EmotionMetrics:
    width = _face_width(face)
    scores = emotion_scores(face)
    # max() keeps the first of equal scores, i.e. label order breaks ties
    primary = max(EMOTION_LABELS, key=lambda label: scores[label])

    prev = _previous(previous_face, face)
    if prev is None:
        stability = FIRST_FACE_STABILITY
    else:
        disp = _dist(face[FACE_NOSE_TIP], prev[FACE_NOSE_TIP]) / width
        stability = 1.0 - disp / 0.1

    eye_open = (
        abs(face[FACE_LEFT_EYE_TOP][1] - face[FACE_LEFT_EYE_BOTTOM][1])
        + abs(face[FACE_RIGHT_EYE_TOP][1] - face[FACE_RIGHT_EYE_BOTTOM][1])
    ) / 2 / width
    mouth_open = abs(face[FACE_LIP_BOTTOM][1] - face[FACE_LIP_TOP][1]) / width
    brow_gap = abs(face[FACE_LEFT_EYE_TOP][1] - face[FACE_LEFT_BROW][1]) / width
    engagement = (
        0.5 * _clip01(eye_open / 0.06)
        + 0.25 * _clip01(mouth_open * 5.0)
        + 0.25 * _clip01(brow_gap / 0.12)
    )

    return EmotionMetrics(
        primary_emotion=primary,
        confidence=round(_eye_contact(face), 3),
        stability=round(_clip01(stability), 3),
        engagement=round(max(ENGAGEMENT_FLOOR, _clip01(engagement)), 3),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Synthetic (demo) readings
# ═══════════════════════════════════════════════════════════════════════════

def _label(value: str) -> Emotion:
    try:
        return Emotion(value)
    except ValueError:
        return Emotion.NEUTRAL


def derive_synthetic(r: SyntheticReading, timestamp: float) -> MetricsSnapshot:
    return MetricsSnapshot(
        posture=PostureMetrics(
            back_straightness=_bounded(r.back_straightness, *PERCENT_RANGE),
            head_tilt=_bounded(r.head_tilt, *ANGLE_RANGE),
            body_lean=_bounded(r.body_lean, *ANGLE_RANGE),
            stability=_bounded(r.posture_stability, *PERCENT_RANGE),
        ),
        emotion=EmotionMetrics(
            primary_emotion=_label(r.emotion),
            confidence=_clip01(r.emotion_confidence),
            stability=_clip01(r.emotion_stability),
            engagement=_clip01(r.engagement),
        ),
        voice=VoiceMetrics(
            clarity=_clip01(r.clarity),
            speech_rate=_clip01(r.speech_rate),
            tone=_clip01(r.tone),
            volume=_clip01(r.volume),
            confidence=_clip01(r.voice_confidence),
        ),
        timestamp=timestamp,
        source="demo",
    )


# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════

def derive(raw: RawFrameData) -> MetricsSnapshot:
    """
    Raises NoDetectionError (a DetectionError) when a live reading lacks a
    pose or a face.  A live reading without audio gets a zero voice record;
    the lifecycle controller decides whether to carry the previous one.
    """
    if raw.reading is not None:
        return derive_synthetic(raw.reading, raw.timestamp)

    pose = _sanitize(raw.pose, POSE_POINTS, "pose")
    face = _sanitize(raw.face, FACE_MESH_POINTS, "face")

    if raw.audio is not None and raw.audio.size > 0:
        voice = analyze_voice(raw.audio, raw.sample_rate)
    else:
        voice = VoiceMetrics()

    return MetricsSnapshot(
        posture=derive_posture(pose, raw.previous_pose),
        emotion=derive_emotion(face, raw.previous_face),
        voice=voice,
        timestamp=raw.timestamp,
        source=raw.source,
    )
