"""
Shared pytest fixtures for interview coach tests.

VirtualScheduler drives the pipeline's timers on a fake clock, so timer
scenarios ("after 5000 ms ...") are deterministic and instant.
"""

import asyncio
from typing import Any, List, Optional

import numpy as np
import pytest

from interview_coach.core.errors import ExtractorInitError, MediaPermissionError, NoDetectionError
from interview_coach.core.interfaces import MediaConstraints
from interview_coach.core.models import (
    EmotionMetrics,
    MetricsSnapshot,
    PostureMetrics,
    VoiceMetrics,
)


# ---------------------------------------------------------------------------
# Virtual time
# ---------------------------------------------------------------------------

async def settle(rounds: int = 20) -> None:
    """Let spawned tasks run to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualTimer:
    def __init__(self, scheduler: "VirtualScheduler", interval: float, callback: Any, name: str) -> None:
        self.name = name
        self.interval = interval
        self.callback = callback
        self.start = scheduler.now
        self.fired = 0
        self._active = True

    @property
    def next_due(self) -> float:
        return self.start + (self.fired + 1) * self.interval

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False


class VirtualScheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[VirtualTimer] = []

    def time(self) -> float:
        return self.now

    def call_every(self, interval: float, callback: Any, name: str = "") -> VirtualTimer:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = VirtualTimer(self, interval, callback, name)
        self.timers.append(timer)
        return timer

    @property
    def active_count(self) -> int:
        return sum(1 for t in self.timers if t.active)

    async def advance(self, ms: float) -> None:
        target = self.now + ms / 1000.0
        while True:
            due = [t for t in self.timers if t.active and t.next_due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.next_due)
            self.now = max(self.now, timer.next_due)
            timer.fired += 1
            result = timer.callback()
            if asyncio.iscoroutine(result):
                await result
            await settle()
        self.now = target
        await settle()


# ---------------------------------------------------------------------------
# Landmarks
# ---------------------------------------------------------------------------

def make_pose(shoulder_dy: float = 0.0, nose_dx: float = 0.0) -> np.ndarray:
    """Upright, centred subject; MediaPipe pose layout (33, 4)."""
    pose = np.full((33, 4), 0.5)
    pose[:, 3] = 0.99
    pose[0, :2] = (0.5 + nose_dx, 0.30)   # nose
    pose[2, :2] = (0.53, 0.28)            # left eye
    pose[5, :2] = (0.47, 0.28)            # right eye
    pose[7, :2] = (0.56, 0.29)            # left ear
    pose[8, :2] = (0.44, 0.29)            # right ear
    pose[11, :2] = (0.60, 0.50 + shoulder_dy)
    pose[12, :2] = (0.40, 0.50)
    pose[23, :2] = (0.58, 0.80)
    pose[24, :2] = (0.42, 0.80)
    return pose


def make_face(smile: float = 0.0) -> np.ndarray:
    """Relaxed face looking at the camera; face mesh layout (478, 3)."""
    face = np.full((478, 3), 0.5)
    face[:, 2] = 0.0
    face[234, :2] = (0.35, 0.40)   # cheeks, width 0.3
    face[454, :2] = (0.65, 0.40)
    face[1, :2] = (0.50, 0.42)     # nose tip
    face[33, :2] = (0.40, 0.35)    # left eye outer / inner
    face[133, :2] = (0.46, 0.35)
    face[362, :2] = (0.54, 0.35)   # right eye inner / outer
    face[263, :2] = (0.60, 0.35)
    face[159, :2] = (0.43, 0.34)   # eyelids
    face[145, :2] = (0.43, 0.36)
    face[386, :2] = (0.57, 0.34)
    face[374, :2] = (0.57, 0.36)
    face[105, :2] = (0.43, 0.313)  # brows
    face[334, :2] = (0.57, 0.313)
    face[13, :2] = (0.50, 0.500)   # lips
    face[14, :2] = (0.50, 0.505)
    face[61, :2] = (0.45, 0.5025 - smile)
    face[291, :2] = (0.55, 0.5025 - smile)
    face[468, :2] = (0.43, 0.35)   # irises
    face[473, :2] = (0.57, 0.35)
    return face


def make_snapshot(
    back: float = 90.0,
    head_tilt: float = 2.0,
    body_lean: float = 2.0,
    posture_stability: float = 90.0,
    emotion: str = "neutral",
    confidence: float = 0.9,
    emotion_stability: float = 0.9,
    engagement: float = 0.9,
    clarity: float = 0.9,
    speech_rate: float = 0.5,
    tone: float = 0.9,
    volume: float = 0.7,
    voice_confidence: float = 0.9,
    timestamp: float = 0.0,
) -> MetricsSnapshot:
    return MetricsSnapshot(
        posture=PostureMetrics(back, head_tilt, body_lean, posture_stability),
        emotion=EmotionMetrics(emotion, confidence, emotion_stability, engagement),
        voice=VoiceMetrics(clarity, speech_rate, tone, volume, voice_confidence),
        timestamp=timestamp,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeExtractor:
    """Returns fixed landmarks; `gate` holds every call until it is set."""

    def __init__(self, fail_init: bool = False) -> None:
        self.pose = make_pose()
        self.face = make_face()
        self.fail_init = fail_init
        self.face_failures = 0
        self.gate: Optional[asyncio.Event] = None
        self.initialized = False
        self.closed = False
        self.calls = 0
        self.active_calls = 0
        self.max_concurrent = 0

    def initialize(self) -> None:
        if self.fail_init:
            raise ExtractorInitError("models missing")
        self.initialized = True

    async def _call(self, result: np.ndarray) -> np.ndarray:
        self.calls += 1
        self.active_calls += 1
        self.max_concurrent = max(self.max_concurrent, self.active_calls)
        try:
            if self.gate is not None:
                await self.gate.wait()
            return result
        finally:
            self.active_calls -= 1

    async def estimate_pose(self, frame: np.ndarray) -> np.ndarray:
        return await self._call(self.pose)

    async def estimate_face(self, frame: np.ndarray) -> np.ndarray:
        face = await self._call(self.face)
        if self.face_failures > 0:
            self.face_failures -= 1
            raise NoDetectionError("face")
        return face

    def close(self) -> None:
        self.closed = True


class FakeStream:
    def __init__(self, tracks: List[str]) -> None:
        self.tracks = set(tracks)
        self.frame: Optional[np.ndarray] = np.zeros((48, 64, 3), dtype=np.uint8)
        self.audio: Optional[np.ndarray] = None

    @property
    def has_active_video(self) -> bool:
        return "video" in self.tracks

    @property
    def active_tracks(self) -> List[str]:
        return sorted(self.tracks)

    @property
    def sample_rate(self) -> int:
        return 16000

    async def read_frame(self) -> Optional[np.ndarray]:
        return self.frame

    def read_audio(self) -> Optional[np.ndarray]:
        return self.audio

    def end_track(self, kind: str) -> None:
        self.tracks.discard(kind)

    def close(self) -> None:
        self.tracks.clear()


class FakeCapture:
    """Stands in for cv2.VideoCapture; frames are solid blue in BGR."""

    def __init__(self, index: int, opened: bool = True) -> None:
        self.index = index
        self.opened = opened
        self.props = {}

    def isOpened(self) -> bool:
        return self.opened

    def set(self, prop: int, value: float) -> None:
        self.props[prop] = value

    def read(self):
        img = np.zeros((24, 32, 3), dtype=np.uint8)
        img[:, :, 0] = 255
        return True, img

    def release(self) -> None:
        self.opened = False


class FakeMediaSource:
    def __init__(self, denied: bool = False) -> None:
        self.denied = denied
        self.streams: List[FakeStream] = []
        self.acquired = 0
        self.released = 0

    async def acquire(self, constraints: MediaConstraints) -> FakeStream:
        if self.denied:
            raise MediaPermissionError("Permission denied by user")
        self.acquired += 1
        stream = FakeStream(["video", "audio"])
        self.streams.append(stream)
        return stream

    async def release(self, handle: FakeStream) -> None:
        self.released += 1
        handle.close()

    @property
    def open_tracks(self) -> int:
        return sum(len(s.active_tracks) for s in self.streams)


def sine(freq: float = 1000.0, seconds: float = 1.0, amplitude: float = 0.5, sample_rate: int = 16000) -> np.ndarray:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def media():
    return FakeMediaSource()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def good_snapshot():
    return make_snapshot()
