"""
Unit tests for the rolling delta tracker.
"""

import pytest

from interview_coach.processing.delta import DeltaTracker, TrackerState, compute_delta
from conftest import make_snapshot


def _extreme(high: bool, timestamp: float = 0.0):
    p, u = (100.0, 1.0) if high else (0.0, 0.0)
    return make_snapshot(
        back=p, posture_stability=p, confidence=u, emotion_stability=u, engagement=u,
        clarity=u, speech_rate=u, tone=u, volume=u, voice_confidence=u, timestamp=timestamp,
    )


class TestComputeDelta:
    def test_extremes_are_bounded(self):
        up = compute_delta(_extreme(True), _extreme(False))
        down = compute_delta(_extreme(False), _extreme(True))
        assert all(v == 100.0 for v in up.changes.values())
        assert all(v == -100.0 for v in down.changes.values())

    def test_identical_snapshots_give_exact_zero(self):
        snap = make_snapshot()
        record = compute_delta(snap, snap)
        assert record.is_zero

    def test_unit_fields_scaled_to_percentage_points(self):
        before = make_snapshot(clarity=0.5, back=80.0)
        after = make_snapshot(clarity=0.62, back=70.0)
        record = compute_delta(after, before)
        assert record.get("voice.clarity") == pytest.approx(12.0)
        assert record.get("posture.back_straightness") == pytest.approx(-10.0)

    def test_records_baseline_timestamp(self):
        record = compute_delta(make_snapshot(timestamp=10.0), make_snapshot(timestamp=5.0), timestamp=10.0)
        assert record.baseline_timestamp == 5.0
        assert record.timestamp == 10.0

    def test_random_pairs_stay_in_bounds(self, rng):
        for _ in range(500):
            a = make_snapshot(
                back=float(rng.uniform(0, 100)), clarity=float(rng.uniform(0, 1)),
                volume=float(rng.uniform(0, 1)), engagement=float(rng.uniform(0, 1)),
            )
            b = make_snapshot(
                back=float(rng.uniform(0, 100)), clarity=float(rng.uniform(0, 1)),
                volume=float(rng.uniform(0, 1)), engagement=float(rng.uniform(0, 1)),
            )
            assert all(-100.0 <= v <= 100.0 for v in compute_delta(a, b).changes.values())


class TestDeltaTracker:
    def test_starts_idle(self):
        tracker = DeltaTracker()
        assert tracker.state is TrackerState.IDLE
        assert tracker.baseline is None

    def test_idle_window_is_zero(self):
        record = DeltaTracker().close_window(make_snapshot(), now=5.0)
        assert record.is_zero
        assert record.timestamp == 5.0

    def test_first_observation_becomes_baseline(self):
        tracker = DeltaTracker()
        first, second = make_snapshot(timestamp=0.1), make_snapshot(back=50.0, timestamp=0.2)
        tracker.observe(first)
        tracker.observe(second)
        assert tracker.state is TrackerState.TRACKING
        assert tracker.baseline is first

    def test_window_compares_against_baseline_and_slides(self):
        tracker = DeltaTracker()
        base = make_snapshot(back=60.0, timestamp=0.1)
        current = make_snapshot(back=75.0, timestamp=5.0)
        tracker.observe(base)
        record = tracker.close_window(current, now=5.0)
        assert record.get("posture.back_straightness") == 15.0
        assert tracker.baseline is current

    def test_stall_emits_zero(self):
        tracker = DeltaTracker()
        snap = make_snapshot(timestamp=0.1)
        tracker.observe(snap)
        assert tracker.close_window(snap, now=5.0).is_zero

    def test_stall_after_slide_emits_zero(self):
        tracker = DeltaTracker()
        tracker.observe(make_snapshot(back=60.0))
        latest = make_snapshot(back=90.0, timestamp=4.9)
        assert not tracker.close_window(latest, now=5.0).is_zero
        assert tracker.close_window(latest, now=10.0).is_zero

    def test_reset_returns_to_idle(self):
        tracker = DeltaTracker()
        tracker.observe(make_snapshot())
        tracker.reset()
        assert tracker.state is TrackerState.IDLE
        assert tracker.baseline is None
