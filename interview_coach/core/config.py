"""
Interview Coach: Configuration

Centralised settings from environment variables (and an optional .env file).
Timer cadences, alert thresholds and model paths live here.
"""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

_PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent.parent


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    # "browser": frames pushed over the WebSocket; "camera": local OpenCV device
    media_source: str = os.getenv("COACH_MEDIA_SOURCE", "browser")
    camera_index: int = int(os.getenv("COACH_CAMERA_INDEX", "0"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    )


# ---------------------------------------------------------------------------
# Sampling cadence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SamplerConfig:
    # Fast tick in demo mode (seconds)
    demo_tick_interval: float = _env_float("COACH_DEMO_TICK_S", 0.1)
    # Fast tick in live mode, stands in for the browser's frame callback
    live_tick_interval: float = _env_float("COACH_LIVE_TICK_S", 1 / 15)
    # Delta window, fixed
    delta_window: float = 5.0
    # Status broadcast interval (only when a status listener is registered)
    status_interval: float = _env_float("COACH_STATUS_INTERVAL_S", 1.0)
    # Snapshot is reported stale after this long without a successful tick
    stale_after: float = _env_float("COACH_STALE_AFTER_S", 2.0)
    # Points kept for the speech-rate sparkline
    speech_history_size: int = 20
    # Probability that a demo tick "speaks" a word
    demo_word_probability: float = 0.3
    # Seconds of audio handed to the voice heuristics each tick
    audio_window: float = 1.0
    audio_sample_rate: int = int(os.getenv("COACH_AUDIO_SAMPLE_RATE", "16000"))


# ---------------------------------------------------------------------------
# Alert thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlertConfig:
    max_alerts: int = 3
    max_suggestions: int = 5
    back_straightness_min: float = 70.0
    head_tilt_max: float = 5.0
    emotion_confidence_min: float = 0.6
    voice_clarity_min: float = 0.6
    speech_rate_max: float = 0.8
    filler_words_max: int = 5


# ---------------------------------------------------------------------------
# MediaPipe models (Tasks API 0.10.x+)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelConfig:
    pose_model_path: str = os.getenv(
        "COACH_POSE_MODEL", str(_PACKAGE_ROOT.parent / "models" / "pose_landmarker_lite.task")
    )
    face_model_path: str = os.getenv(
        "COACH_FACE_MODEL", str(_PACKAGE_ROOT.parent / "models" / "face_landmarker.task")
    )
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
sampler_cfg = SamplerConfig()
alert_cfg = AlertConfig()
model_cfg = ModelConfig()
