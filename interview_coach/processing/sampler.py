"""
Interview Coach: Frame/Audio Samplers

One `tick()` per fast-timer firing, returning the RawFrameData derivation
needs.  Two implementations:

  DemoSampler   synthetic readings, never fails
  LiveSampler   latest frame + audio window from the owned stream handle,
                pose and face landmarks from the feature extractor
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from ..core.config import SamplerConfig, sampler_cfg
from ..core.errors import MediaStreamError, NoDetectionError
from ..core.interfaces import FeatureExtractor, StreamHandle
from ..core.models import EMOTION_LABELS, RawFrameData, SyntheticReading

DEMO_SENTENCE: Tuple[str, ...] = tuple("Hello I think that um the project is going well".split())

# Uniform ranges used for synthetic readings
DEMO_PERCENT_RANGE = (70.0, 100.0)
DEMO_ANGLE_RANGE = (0.0, 10.0)
DEMO_UNIT_RANGE = (0.6, 1.0)


class DemoSampler:
    """Synthetic readings drawn uniformly from plausible ranges."""

    source = "demo"

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        word_probability: float = sampler_cfg.demo_word_probability,
    ) -> None:
        self._rng = rng if rng is not None else np.random.default_rng()
        self._word_probability = word_probability

    def _uniform(self, bounds: Tuple[float, float]) -> float:
        return float(self._rng.uniform(*bounds))

    def reading(self) -> SyntheticReading:
        u = self._uniform
        return SyntheticReading(
            back_straightness=u(DEMO_PERCENT_RANGE),
            head_tilt=u(DEMO_ANGLE_RANGE),
            body_lean=u(DEMO_ANGLE_RANGE),
            posture_stability=u(DEMO_PERCENT_RANGE),
            emotion=EMOTION_LABELS[int(self._rng.integers(len(EMOTION_LABELS)))].value,
            emotion_confidence=u(DEMO_UNIT_RANGE),
            emotion_stability=u(DEMO_UNIT_RANGE),
            engagement=u(DEMO_UNIT_RANGE),
            clarity=u(DEMO_UNIT_RANGE),
            speech_rate=u(DEMO_UNIT_RANGE),
            tone=u(DEMO_UNIT_RANGE),
            volume=u(DEMO_UNIT_RANGE),
            voice_confidence=u(DEMO_UNIT_RANGE),
        )

    def spoken_word(self) -> Optional[str]:
        if self._rng.random() < self._word_probability:
            return DEMO_SENTENCE[int(self._rng.integers(len(DEMO_SENTENCE)))]
        return None

    async def tick(self, now: float) -> RawFrameData:
        return RawFrameData(
            timestamp=now,
            source=self.source,
            reading=self.reading(),
            spoken_word=self.spoken_word(),
        )

    def reset(self) -> None:
        pass


class LiveSampler:
    """
    Reads from a stream handle it does not own and runs the pose model, then
    the face model, on the same frame.  Remembers the last successful
    pose/face so the next reading carries them for the movement-based
    stability scores.
    """

    source = "live"

    def __init__(
        self,
        handle: StreamHandle,
        extractor: FeatureExtractor,
        cfg: SamplerConfig = sampler_cfg,
    ) -> None:
        self._handle = handle
        self._extractor = extractor
        self._cfg = cfg
        self._previous_pose: Optional[np.ndarray] = None
        self._previous_face: Optional[np.ndarray] = None

    async def tick(self, now: float) -> RawFrameData:
        if not self._handle.has_active_video:
            raise MediaStreamError(
                f"Video track lost (active tracks: {self._handle.active_tracks or 'none'})"
            )

        frame = await self._handle.read_frame()
        if frame is None:
            raise NoDetectionError("frame", "No video frame received yet")

        # One extraction at a time: the models share a single worker thread
        pose = await self._extractor.estimate_pose(frame)
        face = await self._extractor.estimate_face(frame)

        audio = self._handle.read_audio()
        raw = RawFrameData(
            timestamp=now,
            source=self.source,
            pose=pose,
            face=face,
            previous_pose=self._previous_pose,
            previous_face=self._previous_face,
            audio=audio,
            sample_rate=self._handle.sample_rate,
        )
        self._previous_pose = pose
        self._previous_face = face
        return raw

    def reset(self) -> None:
        self._previous_pose = None
        self._previous_face = None
