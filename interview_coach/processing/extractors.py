"""
Interview Coach: MediaPipe Feature Extractor

Pose and face landmark models via the MediaPipe Tasks API (0.10.x+), run in
IMAGE mode on a single worker thread so inference never blocks the event
loop and never overlaps.

Models are loaded in `initialize()`, not at import, so demo sessions work on
machines without mediapipe or the .task files.
"""

from __future__ import annotations

import asyncio
import logging
import pathlib
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import numpy as np

from ..core.config import ModelConfig, model_cfg
from ..core.errors import ExtractorInitError, NoDetectionError

logger = logging.getLogger("coach.extractor")


class MediaPipeExtractor:
    """
    Lifecycle:
        extractor.initialize()          # raises ExtractorInitError
        pose = await extractor.estimate_pose(rgb_frame)
        face = await extractor.estimate_face(rgb_frame)
        extractor.close()
    """

    def __init__(self, cfg: ModelConfig = model_cfg) -> None:
        self._cfg = cfg
        self._mp: Any = None
        self._pose: Any = None
        self._face: Any = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def ready(self) -> bool:
        return self._pose is not None and self._face is not None

    def initialize(self) -> None:
        if self.ready:
            return

        pose_path = pathlib.Path(self._cfg.pose_model_path)
        face_path = pathlib.Path(self._cfg.face_model_path)
        for path in (pose_path, face_path):
            if not path.exists():
                raise ExtractorInitError(f"Model file not found: {path}")

        try:
            import mediapipe as mp
        except ImportError as e:
            raise ExtractorInitError(f"mediapipe is not installed: {e}") from e

        try:
            BaseOptions = mp.tasks.BaseOptions
            RunningMode = mp.tasks.vision.RunningMode

            pose_opts = mp.tasks.vision.PoseLandmarkerOptions(
                base_options=BaseOptions(model_asset_path=str(pose_path)),
                running_mode=RunningMode.IMAGE,
                num_poses=1,
                min_pose_detection_confidence=self._cfg.min_detection_confidence,
                min_tracking_confidence=self._cfg.min_tracking_confidence,
            )
            face_opts = mp.tasks.vision.FaceLandmarkerOptions(
                base_options=BaseOptions(model_asset_path=str(face_path)),
                running_mode=RunningMode.IMAGE,
                num_faces=1,
                min_face_detection_confidence=self._cfg.min_detection_confidence,
                min_face_presence_confidence=self._cfg.min_detection_confidence,
                min_tracking_confidence=self._cfg.min_tracking_confidence,
                output_face_blendshapes=False,
                output_facial_transformation_matrixes=False,
            )
            self._pose = mp.tasks.vision.PoseLandmarker.create_from_options(pose_opts)
            self._face = mp.tasks.vision.FaceLandmarker.create_from_options(face_opts)
        except Exception as e:
            self.close()
            raise ExtractorInitError(f"Failed to load MediaPipe models: {e}") from e

        self._mp = mp
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="coach-mp")
        logger.info("PoseLandmarker + FaceLandmarker loaded (Tasks API)")

    # -- Inference -------------------------------------------------------------

    def _image(self, frame: np.ndarray) -> Any:
        rgb = np.ascontiguousarray(frame, dtype=np.uint8)
        return self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)

    def _pose_sync(self, frame: np.ndarray) -> np.ndarray:
        result = self._pose.detect(self._image(frame))
        if not result.pose_landmarks:
            raise NoDetectionError("pose")
        return np.array(
            [[lm.x, lm.y, lm.z, lm.visibility if lm.visibility is not None else 0.0]
             for lm in result.pose_landmarks[0]],
            dtype=np.float64,
        )

    def _face_sync(self, frame: np.ndarray) -> np.ndarray:
        result = self._face.detect(self._image(frame))
        if not result.face_landmarks:
            raise NoDetectionError("face")
        return np.array(
            [[lm.x, lm.y, lm.z] for lm in result.face_landmarks[0]],
            dtype=np.float64,
        )

    async def _run(self, fn: Any, frame: np.ndarray) -> np.ndarray:
        if not self.ready or self._executor is None:
            raise ExtractorInitError("Extractor used before initialize()")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, frame)

    async def estimate_pose(self, frame: np.ndarray) -> np.ndarray:
        return await self._run(self._pose_sync, frame)

    async def estimate_face(self, frame: np.ndarray) -> np.ndarray:
        return await self._run(self._face_sync, frame)

    def close(self) -> None:
        """Blocks until an in-flight detect() returns, then closes both landmarkers."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        for model in (self._pose, self._face):
            if model is not None:
                try:
                    model.close()
                except Exception as e:
                    logger.debug(f"Landmarker close error: {e}")
        self._pose = None
        self._face = None
