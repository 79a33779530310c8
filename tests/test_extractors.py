"""
Unit tests for the MediaPipe extractor: failure paths and shutdown (no model files needed).
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import numpy as np
import pytest

from interview_coach.core.config import ModelConfig
from interview_coach.core.errors import ExtractorInitError
from interview_coach.processing.extractors import MediaPipeExtractor


@pytest.fixture
def missing_models(tmp_path):
    return ModelConfig(
        pose_model_path=str(tmp_path / "pose_landmarker.task"),
        face_model_path=str(tmp_path / "face_landmarker.task"),
    )


class TestMediaPipeExtractor:
    def test_missing_model_file(self, missing_models):
        extractor = MediaPipeExtractor(missing_models)
        with pytest.raises(ExtractorInitError) as exc:
            extractor.initialize()
        assert "pose_landmarker.task" in str(exc.value)
        assert not extractor.ready

    async def test_inference_before_initialize(self, missing_models):
        extractor = MediaPipeExtractor(missing_models)
        with pytest.raises(ExtractorInitError):
            await extractor.estimate_pose(np.zeros((8, 8, 3), dtype=np.uint8))

    def test_close_without_initialize(self, missing_models):
        extractor = MediaPipeExtractor(missing_models)
        extractor.close()
        extractor.close()
        assert not extractor.ready


class BlockingLandmarker:
    """detect() holds its worker thread until `release` is set."""

    def __init__(self, events, release=None):
        self.events = events
        self.release = release

    def detect(self, image):
        self.events.append("detect_start")
        if self.release is not None:
            self.release.wait(timeout=2.0)
        self.events.append("detect_end")
        point = SimpleNamespace(x=0.5, y=0.5, z=0.0, visibility=0.9)
        return SimpleNamespace(pose_landmarks=[[point] * 33])

    def close(self):
        self.events.append("close")


class TestShutdown:
    async def test_close_waits_for_running_inference(self, missing_models):
        events = []
        release = threading.Event()
        extractor = MediaPipeExtractor(missing_models)
        extractor._mp = SimpleNamespace(
            Image=lambda image_format, data: data,
            ImageFormat=SimpleNamespace(SRGB="srgb"),
        )
        extractor._pose = BlockingLandmarker(events, release)
        extractor._face = BlockingLandmarker([])
        extractor._executor = ThreadPoolExecutor(max_workers=1)

        pending = asyncio.create_task(extractor.estimate_pose(np.zeros((8, 8, 3), dtype=np.uint8)))
        for _ in range(100):
            if events:
                break
            await asyncio.sleep(0.01)
        assert events == ["detect_start"]

        # The session is torn down mid-inference
        pending.cancel()
        threading.Timer(0.1, release.set).start()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, extractor.close)

        assert events == ["detect_start", "detect_end", "close"]
        assert not extractor.ready
