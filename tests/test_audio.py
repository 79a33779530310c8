"""
Unit tests for the voice heuristics and filler counter.
"""

import numpy as np
import pytest

from interview_coach.core.models import VoiceMetrics
from interview_coach.processing.audio import (
    analyze_voice,
    count_fillers,
    count_words,
    to_float_mono,
)
from conftest import sine


class TestFillerWords:
    def test_counts_single_and_multi_word_fillers(self):
        assert count_fillers("Um, I mean, uh the thing is kind of done") == 4

    def test_case_insensitive(self):
        assert count_fillers("UM uh Hmm") == 3

    def test_ignores_words_containing_fillers(self):
        assert count_fillers("umbrella under the hermit") == 0

    def test_word_count(self):
        assert count_words("Hello, I think that's fine") == 5
        assert count_words("") == 0


class TestToFloatMono:
    def test_int16_rescaled(self):
        out = to_float_mono(np.array([32767, -32768, 0], dtype=np.int16))
        assert out.dtype == np.float32
        assert out[0] == pytest.approx(1.0, abs=1e-4)
        assert out[1] == -1.0

    def test_stereo_averaged(self):
        out = to_float_mono(np.array([[0.5, -0.5], [1.0, 1.0]], dtype=np.float32))
        assert list(out) == [0.0, 1.0]

    def test_nan_and_overflow_sanitised(self):
        out = to_float_mono(np.array([np.nan, 3.0, -7.0], dtype=np.float32))
        assert list(out) == [0.0, 1.0, -1.0]


class TestAnalyzeVoice:
    def test_silence_is_zero(self):
        assert analyze_voice(np.zeros(16000, dtype=np.float32), 16000) == VoiceMetrics()

    def test_empty_is_zero(self):
        assert analyze_voice(np.zeros(0, dtype=np.float32), 16000) == VoiceMetrics()

    def test_speech_band_tone(self):
        v = analyze_voice(sine(1000.0, amplitude=0.5), 16000)
        assert v.volume == pytest.approx(0.5, abs=0.01)
        assert v.clarity > 0.95
        assert v.tone > 0.9

    def test_low_rumble_is_unclear(self):
        v = analyze_voice(sine(100.0, amplitude=0.5), 16000)
        assert v.clarity < 0.05

    def test_noise_is_less_tonal_than_sine(self):
        noise = np.random.default_rng(3).uniform(-0.5, 0.5, 16000).astype(np.float32)
        assert analyze_voice(noise, 16000).tone < analyze_voice(sine(), 16000).tone

    def test_syllable_bursts_set_speech_rate(self):
        # Four 100 ms bursts per second for two seconds
        sr = 16000
        signal = sine(1000.0, seconds=2.0, amplitude=0.6, sample_rate=sr)
        t = np.arange(signal.size) / sr
        envelope = ((t % 0.25) < 0.1).astype(np.float32)
        v = analyze_voice(signal * envelope, sr)
        assert 0.25 <= v.speech_rate <= 0.75

    def test_int16_input(self):
        pcm = (sine(amplitude=0.5) * 32767).astype(np.int16)
        v = analyze_voice(pcm, 16000)
        assert v.volume == pytest.approx(0.5, abs=0.01)

    def test_outputs_always_in_unit_range(self):
        rng = np.random.default_rng(9)
        for _ in range(50):
            samples = rng.normal(0.0, rng.uniform(0.0, 3.0), size=int(rng.integers(1, 4000)))
            v = analyze_voice(samples.astype(np.float32), int(rng.choice([8000, 16000, 48000])))
            for value in (v.clarity, v.speech_rate, v.tone, v.volume, v.confidence):
                assert 0.0 <= value <= 1.0
