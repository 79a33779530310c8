"""
Interview Coach: Voice Heuristics

Pure numpy analysis of one audio window (float32 mono or int16 PCM):

  volume       peak amplitude
  clarity      share of spectral power inside the 300–3400 Hz speech band
  speech_rate  syllable-like envelope peaks per second, / 8
  tone         1 − spectral flatness (tonal voice vs. hiss)
  confidence   mean of clarity and loudness steadiness across voiced frames

Every output lands in [0, 1]; silence yields all zeros.  Also hosts the
filler-word counter used for the session transcript.
"""

from __future__ import annotations

import math
import re
from typing import Tuple

import numpy as np

from ..core.models import VoiceMetrics

# Filler words counted against the candidate
FILLER_WORDS = (
    "um", "uh", "erm", "er", "ah", "hmm",
    "you know", "i mean", "kind of", "sort of",
)

FILLER_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(f) for f in FILLER_WORDS) + r")\b",
    re.IGNORECASE,
)

_WORD_PATTERN = re.compile(r"[A-Za-z']+")

SPEECH_BAND_HZ: Tuple[float, float] = (300.0, 3400.0)
FRAME_SECONDS = 0.02
SILENCE_RMS = 0.01
MIN_PEAK_GAP_SECONDS = 0.1
MAX_SYLLABLES_PER_SECOND = 8.0


def count_fillers(text: str) -> int:
    return len(FILLER_PATTERN.findall(text))


def count_words(text: str) -> int:
    return len(_WORD_PATTERN.findall(text))


def _clip01(value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


def to_float_mono(pcm: np.ndarray) -> np.ndarray:
    """Normalise PCM to float32 mono in [-1, 1]; int16 is rescaled."""
    audio = np.asarray(pcm)
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    if audio.dtype == np.int16:
        audio = audio.astype(np.float32) / 32768.0
    else:
        audio = audio.astype(np.float32)
    audio = np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0)
    return np.clip(audio, -1.0, 1.0)


def frame_rms(audio: np.ndarray, sample_rate: int) -> Tuple[np.ndarray, float]:
    """RMS per ~20 ms frame. Returns (rms_per_frame, frame_seconds)."""
    n = max(1, int(sample_rate * FRAME_SECONDS))
    count = audio.size // n
    if count == 0:
        return np.array([float(np.sqrt(np.mean(audio ** 2)))]), audio.size / sample_rate
    frames = audio[: count * n].reshape(count, n)
    return np.sqrt(np.mean(frames ** 2, axis=1)), n / sample_rate


def syllable_rate(rms_frames: np.ndarray, frame_seconds: float) -> float:
    """Envelope peaks above the mean level, at least 100 ms apart, per second."""
    if rms_frames.size < 3 or frame_seconds <= 0:
        return 0.0
    threshold = max(SILENCE_RMS, float(np.mean(rms_frames)))
    inner = rms_frames[1:-1]
    is_peak = (inner > rms_frames[:-2]) & (inner >= rms_frames[2:]) & (inner > threshold)
    min_gap = max(1, int(round(MIN_PEAK_GAP_SECONDS / frame_seconds)))

    count = 0
    last = -min_gap
    for i in np.nonzero(is_peak)[0] + 1:
        if i - last >= min_gap:
            count += 1
            last = int(i)
    return count / (rms_frames.size * frame_seconds)


def analyze_voice(samples: np.ndarray, sample_rate: int) -> VoiceMetrics:
    audio = to_float_mono(samples)
    if audio.size == 0 or sample_rate <= 0:
        return VoiceMetrics()

    rms_frames, frame_seconds = frame_rms(audio, sample_rate)
    if float(np.max(rms_frames)) < SILENCE_RMS:
        return VoiceMetrics()

    volume = _clip01(np.max(np.abs(audio)))

    spectrum = np.abs(np.fft.rfft(audio)) ** 2
    freqs = np.fft.rfftfreq(audio.size, d=1.0 / sample_rate)
    total = float(np.sum(spectrum))
    if total <= 0.0 or not math.isfinite(total):
        return VoiceMetrics(volume=volume)

    lo, hi = SPEECH_BAND_HZ
    band = (freqs >= lo) & (freqs <= hi)
    clarity = _clip01(np.sum(spectrum[band]) / total)

    # Skip DC; epsilon keeps log() finite on empty bins
    power = spectrum[1:] + 1e-12
    if power.size:
        flatness = float(np.exp(np.mean(np.log(power))) / np.mean(power))
    else:
        flatness = 1.0
    tone = _clip01(1.0 - flatness)

    speech_rate = _clip01(syllable_rate(rms_frames, frame_seconds) / MAX_SYLLABLES_PER_SECOND)

    voiced = rms_frames[rms_frames >= SILENCE_RMS]
    if voiced.size >= 2:
        steadiness = _clip01(1.0 - float(np.std(voiced)) / float(np.mean(voiced)))
    else:
        steadiness = 0.5
    confidence = _clip01(0.5 * clarity + 0.5 * steadiness)

    return VoiceMetrics(
        clarity=round(clarity, 4),
        speech_rate=round(speech_rate, 4),
        tone=round(tone, 4),
        volume=round(volume, 4),
        confidence=round(confidence, 4),
    )
