"""
Unit tests for the session summary.
"""

import pytest

from interview_coach.core.models import SessionCounters
from interview_coach.processing.summary import (
    RECOMMENDATIONS,
    SessionSummaryBuilder,
    grade,
    normalize,
)
from conftest import make_snapshot


class TestGrading:
    @pytest.mark.parametrize("score,expected", [
        (100.0, "good"), (80.0, "good"), (79.9, "ok"), (60.0, "ok"), (59.9, "poor"), (0.0, "poor"),
    ])
    def test_grade_bands(self, score, expected):
        assert grade(score) == expected

    def test_angles_score_as_distance_from_level(self):
        assert normalize("posture", "head_tilt", 4.0) == 96.0
        assert normalize("posture", "back_straightness", 72.0) == 72.0
        assert normalize("voice", "clarity", 0.55) == pytest.approx(55.0)


class TestSessionSummaryBuilder:
    def test_empty_session(self):
        summary = SessionSummaryBuilder().build(session_id="s1")
        assert summary.snapshot_count == 0
        assert summary.grades == {}
        assert summary.recommendations == []

    def test_averages_and_grades(self):
        builder = SessionSummaryBuilder()
        builder.add(make_snapshot(back=80.0, emotion="happy"))
        builder.add(make_snapshot(back=100.0, emotion="happy"))
        builder.add(make_snapshot(back=90.0, emotion="sad"))
        summary = builder.build(session_id="s1", duration_seconds=12.34)

        assert summary.snapshot_count == 3
        assert summary.averages["posture"]["back_straightness"] == 90.0
        assert summary.dominant_emotion == "happy"
        assert summary.grades == {"posture": "good", "emotion": "good", "voice": "good"}
        assert summary.recommendations == []
        assert summary.to_dict()["duration_seconds"] == 12.3

    def test_poor_categories_get_recommendations(self):
        builder = SessionSummaryBuilder()
        builder.add(make_snapshot(confidence=0.2, emotion_stability=0.3, engagement=0.2,
                                  clarity=0.2, tone=0.3, volume=0.2, voice_confidence=0.3))
        summary = builder.build(counters=SessionCounters(filler_words=4, words_spoken=20))

        assert summary.grades["posture"] == "good"
        assert summary.grades["emotion"] == "poor"
        assert summary.grades["voice"] == "poor"
        assert summary.recommendations == [RECOMMENDATIONS["emotion"], RECOMMENDATIONS["voice"]]
        assert summary.counters["filler_words"] == 4

    def test_reset(self):
        builder = SessionSummaryBuilder()
        builder.add(make_snapshot())
        builder.reset()
        assert builder.count == 0
        assert builder.build().averages == {}
