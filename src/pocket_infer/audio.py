# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Audio loading and the Whisper log-mel front end."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .config import WhisperConfig

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16_000
N_FFT = 400
HOP_LENGTH = 160
N_MELS = 80

# (n_fft, n_mels, sample_rate) -> filterbank
_mel_filterbank_cache: dict[tuple[int, int, int], np.ndarray] = {}


# ---------------------------------------------------------------------------
# Mel filterbank
# ---------------------------------------------------------------------------

def _hz_to_mel(freq):
    return 2595.0 * np.log10(1.0 + np.asarray(freq) / 700.0)


def _mel_to_hz(mel):
    return 700.0 * (10.0 ** (np.asarray(mel) / 2595.0) - 1.0)


def mel_filterbank(
    n_fft: int = N_FFT,
    n_mels: int = N_MELS,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Area-normalised triangular mel filters, shape ``(n_mels, n_fft // 2 + 1)``.

    Built once per parameter set and cached.
    """
    key = (n_fft, n_mels, sample_rate)
    cached = _mel_filterbank_cache.get(key)
    if cached is not None:
        return cached

    fft_freqs = np.linspace(0.0, sample_rate / 2.0, n_fft // 2 + 1)
    mel_points = np.linspace(_hz_to_mel(0.0), _hz_to_mel(sample_rate / 2.0), n_mels + 2)
    edges = _mel_to_hz(mel_points)

    left, center, right = edges[:-2, None], edges[1:-1, None], edges[2:, None]
    rising = (fft_freqs[None, :] - left) / (center - left)
    falling = (right - fft_freqs[None, :]) / (right - center)
    filters = np.maximum(0.0, np.minimum(rising, falling))
    filters *= 2.0 / (right - left)

    filters = filters.astype(np.float32)
    _mel_filterbank_cache[key] = filters
    return filters


# ---------------------------------------------------------------------------
# Audio loading
# ---------------------------------------------------------------------------

def load_audio(path: str | Path, target_sr: int = SAMPLE_RATE) -> np.ndarray:
    """Read an audio file as mono float32 at *target_sr*.

    Multi-channel audio is averaged; other sample rates are resampled with
    linear interpolation.
    """
    import soundfile as sf

    samples, sr = sf.read(str(path), dtype="float32", always_2d=False)
    if samples.ndim == 2:
        samples = samples.mean(axis=1)

    if sr != target_sr and len(samples) > 0:
        target_len = int(len(samples) * target_sr / sr)
        samples = np.interp(
            np.linspace(0.0, len(samples) - 1, target_len),
            np.arange(len(samples)),
            samples,
        )

    logger.debug("Loaded %d samples from %s (source rate %d)", len(samples), path, sr)
    return np.asarray(samples, dtype=np.float32)


# ---------------------------------------------------------------------------
# Log-mel spectrogram
# ---------------------------------------------------------------------------

def _power_spectrum(samples: np.ndarray, n_fft: int, hop_length: int) -> np.ndarray:
    """Hann-windowed, centre-padded STFT power, shape ``(n_fft // 2 + 1, frames)``."""
    padded = np.pad(samples, n_fft // 2, mode="reflect")
    frames = sliding_window_view(padded, n_fft)[::hop_length]
    window = np.hanning(n_fft + 1)[:-1].astype(np.float32)
    spectrum = np.fft.rfft(frames * window, n=n_fft, axis=-1)
    return (np.abs(spectrum) ** 2).T


def log_mel_spectrogram(
    samples,
    config: WhisperConfig | None = None,
) -> np.ndarray:
    """Whisper log-mel features, shape ``(n_mels, n_samples // hop_length)``.

    Steps: power STFT (last frame dropped), mel projection,
    ``log10(max(x, 1e-10))``, clamp to 8 below the peak, then
    ``(x + 4) / 4``.
    """
    config = config or WhisperConfig()
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)

    power = _power_spectrum(samples, config.n_fft, config.hop_length)[:, :-1]
    filters = mel_filterbank(config.n_fft, config.n_mels, config.sample_rate)
    mel = filters @ power

    log_spec = np.log10(np.maximum(mel, 1e-10))
    log_spec = np.maximum(log_spec, log_spec.max() - 8.0)
    return ((log_spec + 4.0) / 4.0).astype(np.float32)
