"""
Interview Coach: Collaborator Interfaces

Protocol definitions for everything the analysis loop consumes but does not
own the implementation of:
  1. Feature extraction — pose / face landmark models
  2. Media             — camera + microphone acquisition
  3. Scheduling        — interval timers and the loop clock

The lifecycle controller only talks to these protocols, so tests can swap in
fakes and the server can swap in a WebSocket-fed stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

import numpy as np


# ═══════════════════════════════════════════════════════════════════════════
# Feature extraction
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class FeatureExtractor(Protocol):
    """Black-box landmark models. Receives frames, never the stream."""

    def initialize(self) -> None:
        """Load models. Raises ExtractorInitError on failure."""
        ...

    async def estimate_pose(self, frame: np.ndarray) -> np.ndarray:
        """(33, 4) normalised x/y/z/visibility. Raises NoDetectionError."""
        ...

    async def estimate_face(self, frame: np.ndarray) -> np.ndarray:
        """(468|478, 3) normalised x/y/z. Raises NoDetectionError."""
        ...

    def close(self) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Media
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MediaConstraints:
    video: bool = True
    audio: bool = True
    device_index: int = 0
    width: int = 640
    height: int = 480


@runtime_checkable
class StreamHandle(Protocol):
    """An acquired camera/mic stream. Owned by the lifecycle controller only."""

    @property
    def has_active_video(self) -> bool:
        ...

    @property
    def active_tracks(self) -> List[str]:
        """Names of tracks that are still open ("video", "audio")."""
        ...

    async def read_frame(self) -> Optional[np.ndarray]:
        """Latest RGB frame, or None if nothing has arrived yet."""
        ...

    def read_audio(self) -> Optional[np.ndarray]:
        """Latest audio window as float32 mono in [-1, 1], or None."""
        ...

    @property
    def sample_rate(self) -> int:
        ...


@runtime_checkable
class MediaSource(Protocol):

    async def acquire(self, constraints: MediaConstraints) -> StreamHandle:
        """Open the stream. Raises MediaPermissionError."""
        ...

    async def release(self, handle: StreamHandle) -> None:
        """Stop every track of the handle. Must be safe to call twice."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Scheduling
# ═══════════════════════════════════════════════════════════════════════════

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


@runtime_checkable
class TimerHandle(Protocol):
    name: str

    @property
    def active(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Interval timers plus the clock every timestamp in a session comes from."""

    def time(self) -> float:
        ...

    def call_every(self, interval: float, callback: TimerCallback, name: str = "") -> TimerHandle:
        ...

    @property
    def active_count(self) -> int:
        ...
