"""
Interview Coach: Error Taxonomy

Only session-start failures reach the user.  Per-tick failures degrade to
stale data and are counted, never shown.

  MediaPermissionError  fatal at start   (camera/mic denied)
  ExtractorInitError    fatal at start   (models failed to load, demo still works)
  MediaStreamError      fatal mid-session (video track vanished)
  DetectionError        soft, per tick    (nothing detected, keep last snapshot)
"""

from __future__ import annotations

from typing import Optional


class CoachError(Exception):
    """Root of every error raised by the analysis loop."""


class MediaPermissionError(CoachError, PermissionError):
    """Camera or microphone could not be acquired."""


class ExtractorInitError(CoachError):
    """Pose/face models could not be loaded."""


class MediaStreamError(CoachError):
    """The owned stream lost its video track while running."""


class DetectionError(CoachError):
    """A tick produced no usable reading."""


class NoDetectionError(DetectionError):
    """An extractor found no pose/face (or no frame was available)."""

    def __init__(self, channel: str, message: Optional[str] = None) -> None:
        self.channel = channel
        super().__init__(message or f"No {channel} detected")


class SessionStateError(CoachError):
    """Lifecycle operation called in the wrong state."""
