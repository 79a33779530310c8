"""
Interview Coach: Alerts & Suggestions

Rule tables evaluated against the current snapshot on every update.  Lists
are recomputed from scratch each time, never accumulated.

  alerts       first `max_alerts` matches in table order, or an affirmation
  suggestions  the "live feedback" list, first `max_suggestions` matches
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from ..core.config import AlertConfig, alert_cfg
from ..core.models import MetricsSnapshot, SessionCounters

AFFIRMATION = "Great performance! Keep it up"

Rule = Tuple[Callable[[MetricsSnapshot, SessionCounters], bool], str]


class AlertGenerator:
    """Fixed-order threshold table; order is table order, not severity."""

    def __init__(self, cfg: AlertConfig = alert_cfg) -> None:
        self._cfg = cfg
        c = cfg
        self.rules: List[Rule] = [
            (lambda s, n: s.posture.back_straightness < c.back_straightness_min,
             "Try to sit up straighter with shoulders relaxed"),
            (lambda s, n: s.posture.head_tilt > c.head_tilt_max,
             "Keep your head level and centered"),
            (lambda s, n: s.emotion.confidence < c.emotion_confidence_min,
             "Maintain eye contact to project confidence"),
            (lambda s, n: s.voice.clarity < c.voice_clarity_min,
             "Speak more clearly and enunciate your words"),
            (lambda s, n: s.voice.speech_rate > c.speech_rate_max,
             "Slow down your speaking pace"),
            (lambda s, n: n.filler_words > c.filler_words_max,
             "Try to reduce filler words like 'um' and 'uh'"),
        ]

    def generate(self, current: MetricsSnapshot, counters: Optional[SessionCounters] = None) -> List[str]:
        counters = counters if counters is not None else SessionCounters()
        matches = [msg for check, msg in self.rules if check(current, counters)]
        return matches[: self._cfg.max_alerts] or [AFFIRMATION]


SUGGESTION_RULES: List[Tuple[Callable[[MetricsSnapshot], bool], str]] = [
    (lambda s: s.posture.back_straightness < 70, "Sit up straighter to improve back alignment"),
    (lambda s: s.posture.stability < 70, "Reduce fidgeting to increase body stability"),
    (lambda s: s.posture.body_lean > 7, "Keep your body centered; avoid leaning"),
    (lambda s: s.posture.head_tilt > 7, "Level your head to face the camera"),
    (lambda s: s.emotion.engagement < 0.6, "Show a bit more facial engagement (nods, smiles)"),
    (lambda s: s.emotion.confidence < 0.6, "Maintain eye contact with the camera to convey confidence"),
    (lambda s: s.voice.clarity < 0.6, "Articulate clearly and open your mouth slightly more"),
    (lambda s: s.voice.speech_rate > 0.75, "Slow down your speaking pace"),
    (lambda s: s.voice.volume > 0.85, "Lower your volume slightly"),
    (lambda s: s.voice.volume < 0.4, "Increase your volume a little"),
]


def build_suggestions(current: MetricsSnapshot, limit: int = alert_cfg.max_suggestions) -> List[str]:
    return [msg for check, msg in SUGGESTION_RULES if check(current)][:limit]
