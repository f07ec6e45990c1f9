# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Tests for audio loading and log-mel features."""

from __future__ import annotations

import numpy as np
import pytest
import soundfile as sf

from pocket_infer.audio import (
    SAMPLE_RATE,
    load_audio,
    log_mel_spectrogram,
    mel_filterbank,
)
from pocket_infer.config import WhisperConfig


def _tone(freq: float, seconds: float, sr: int = SAMPLE_RATE) -> np.ndarray:
    t = np.arange(int(seconds * sr)) / sr
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


class TestMelFilterbank:
    def test_shape_and_sign(self):
        filters = mel_filterbank()
        assert filters.shape == (80, 201)
        assert filters.dtype == np.float32
        assert np.all(filters >= 0.0)
        assert np.all(filters.sum(axis=1) > 0.0)

    def test_cached(self):
        assert mel_filterbank(400, 80, 16000) is mel_filterbank(400, 80, 16000)
        assert mel_filterbank(400, 40, 16000).shape == (40, 201)


class TestLogMelSpectrogram:
    def test_full_chunk_shape(self):
        cfg = WhisperConfig()
        mel = log_mel_spectrogram(np.zeros(cfg.n_samples, dtype=np.float32), cfg)
        assert mel.shape == (80, 3000)
        assert mel.dtype == np.float32

    def test_silence(self):
        mel = log_mel_spectrogram(np.zeros(16000, dtype=np.float32))
        # log10 floor of 1e-10 normalised: (-10 + 4) / 4
        assert np.allclose(mel, -1.5)

    def test_dynamic_range_is_clamped(self):
        mel = log_mel_spectrogram(_tone(440.0, 1.0))
        assert mel.max() - mel.min() <= 2.0 + 1e-5

    def test_tone_energy_in_low_bands(self):
        mel = log_mel_spectrogram(_tone(300.0, 1.0))
        band_energy = mel.mean(axis=1)
        assert int(np.argmax(band_energy)) < 20


class TestLoadAudio:
    def test_mono_at_target_rate(self, tmp_path):
        path = tmp_path / "tone.wav"
        sf.write(str(path), _tone(440.0, 0.5), SAMPLE_RATE)
        samples = load_audio(path)
        assert samples.dtype == np.float32
        assert samples.shape == (8000,)

    def test_stereo_is_averaged(self, tmp_path):
        path = tmp_path / "stereo.wav"
        left = np.full(1600, 0.5, dtype=np.float32)
        right = np.full(1600, -0.5, dtype=np.float32)
        sf.write(str(path), np.stack([left, right], axis=1), SAMPLE_RATE)
        samples = load_audio(path)
        assert samples.shape == (1600,)
        assert np.allclose(samples, 0.0, atol=1e-4)

    def test_resampled(self, tmp_path):
        path = tmp_path / "low.wav"
        sf.write(str(path), _tone(200.0, 1.0, sr=8000), 8000)
        samples = load_audio(path)
        assert samples.shape == (16000,)

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuntimeError):
            load_audio(tmp_path / "missing.wav")
