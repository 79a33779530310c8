"""
Interview Coach: Media Sources

Two ways to get camera/mic data into a live session:

  CameraSource       a local webcam via OpenCV (video only)
  PushedMediaSource  frames and audio pushed by the browser over the WebSocket
                     (base64 JPEG frames, base64 PCM16 audio chunks)

Both hand the lifecycle controller a stream handle it owns exclusively;
`release()` stops every track and may be called more than once.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Set

import cv2
import numpy as np

from ..core.config import SamplerConfig, sampler_cfg
from ..core.errors import MediaPermissionError
from ..core.interfaces import MediaConstraints
from .audio import to_float_mono

logger = logging.getLogger("coach.media")


# ═══════════════════════════════════════════════════════════════════════════
# Local camera
# ═══════════════════════════════════════════════════════════════════════════

class CameraStream:
    """OpenCV capture; frames are read on a dedicated thread and returned RGB."""

    def __init__(self, capture: Any, sample_rate: int) -> None:
        self._capture = capture
        self._sample_rate = sample_rate
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="coach-cam")

    @property
    def has_active_video(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    @property
    def active_tracks(self) -> List[str]:
        return ["video"] if self.has_active_video else []

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def _read_sync(self) -> Optional[np.ndarray]:
        ok, frame_bgr = self._capture.read()
        if not ok or frame_bgr is None:
            return None
        return cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

    async def read_frame(self) -> Optional[np.ndarray]:
        if not self.has_active_video:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._read_sync)

    def read_audio(self) -> Optional[np.ndarray]:
        return None

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        self._executor.shutdown(wait=False)


class CameraSource:
    def __init__(self, cfg: SamplerConfig = sampler_cfg) -> None:
        self._cfg = cfg

    async def acquire(self, constraints: MediaConstraints) -> CameraStream:
        capture = cv2.VideoCapture(constraints.device_index)
        if not capture.isOpened():
            capture.release()
            raise MediaPermissionError(
                f"Camera {constraints.device_index} could not be opened "
                f"(permission denied or device busy)"
            )
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        logger.info(f"Camera {constraints.device_index} opened")
        return CameraStream(capture, self._cfg.audio_sample_rate)

    async def release(self, handle: CameraStream) -> None:
        handle.close()


# ═══════════════════════════════════════════════════════════════════════════
# Browser-pushed stream
# ═══════════════════════════════════════════════════════════════════════════

class PushedStream:
    """
    Latest frame plus a rolling audio window, filled by the WebSocket handler.

    Audio is kept as float32 mono; only the last `audio_window` seconds are
    retained.  A sample-rate change from the client restarts the buffer.
    """

    def __init__(self, tracks: Set[str], cfg: SamplerConfig = sampler_cfg) -> None:
        self._tracks = set(tracks)
        self._cfg = cfg
        self._frame: Optional[np.ndarray] = None
        self._audio = np.zeros(0, dtype=np.float32)
        self._sample_rate = cfg.audio_sample_rate
        self.frames_received = 0
        self.audio_chunks_received = 0

    @property
    def has_active_video(self) -> bool:
        return "video" in self._tracks

    @property
    def active_tracks(self) -> List[str]:
        return sorted(self._tracks)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    # -- Producers (WebSocket handler) ----------------------------------------

    def push_frame(self, base64_jpeg: str) -> bool:
        if not self.has_active_video:
            return False
        try:
            img_bytes = base64.b64decode(base64_jpeg)
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Frame base64 decode error: {e}")
            return False
        if not img_bytes:
            return False
        frame_bgr = cv2.imdecode(np.frombuffer(img_bytes, np.uint8), cv2.IMREAD_COLOR)
        if frame_bgr is None:
            logger.debug("Frame JPEG decode failed")
            return False
        self._frame = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        self.frames_received += 1
        return True

    def push_pcm(self, samples: np.ndarray, sample_rate: int) -> None:
        if "audio" not in self._tracks:
            return
        if sample_rate != self._sample_rate:
            self._sample_rate = sample_rate
            self._audio = np.zeros(0, dtype=np.float32)
        chunk = to_float_mono(samples)
        keep = max(1, int(self._cfg.audio_window * self._sample_rate))
        self._audio = np.concatenate([self._audio, chunk])[-keep:]
        self.audio_chunks_received += 1

    def push_audio(self, base64_pcm16: str, sample_rate: int) -> bool:
        if sample_rate <= 0:
            return False
        try:
            raw = base64.b64decode(base64_pcm16)
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Audio base64 decode error: {e}")
            return False
        if len(raw) % 2:
            raw = raw[:-1]
        self.push_pcm(np.frombuffer(raw, dtype="<i2").astype(np.int16), sample_rate)
        return True

    def end_track(self, kind: str) -> None:
        if kind in self._tracks:
            self._tracks.discard(kind)
            logger.info(f"Client ended {kind} track")

    # -- Consumers (sampler) --------------------------------------------------

    async def read_frame(self) -> Optional[np.ndarray]:
        return self._frame

    def read_audio(self) -> Optional[np.ndarray]:
        if "audio" not in self._tracks or self._audio.size == 0:
            return None
        return self._audio.copy()

    def close(self) -> None:
        self._tracks.clear()
        self._frame = None
        self._audio = np.zeros(0, dtype=np.float32)


class PushedMediaSource:
    """
    One per WebSocket connection.  The client reports a denied getUserMedia
    with `deny()`, which makes the next `acquire()` fail.
    """

    def __init__(self, cfg: SamplerConfig = sampler_cfg) -> None:
        self._cfg = cfg
        self._denied_reason: Optional[str] = None
        self.stream: Optional[PushedStream] = None

    def deny(self, reason: str = "Permission denied") -> None:
        self._denied_reason = reason

    def allow(self) -> None:
        self._denied_reason = None

    async def acquire(self, constraints: MediaConstraints) -> PushedStream:
        if self._denied_reason is not None:
            raise MediaPermissionError(self._denied_reason)
        tracks: Set[str] = set()
        if constraints.video:
            tracks.add("video")
        if constraints.audio:
            tracks.add("audio")
        self.stream = PushedStream(tracks, self._cfg)
        return self.stream

    async def release(self, handle: PushedStream) -> None:
        handle.close()
        if self.stream is handle:
            self.stream = None
