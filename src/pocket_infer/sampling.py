# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Token selection from logit vectors: temperature, softmax, top-k, sampling."""

from __future__ import annotations

from typing import Optional

import numpy as np

from .config import GenerationConfig

# Returned instead of a token ID when the logits are empty or missing.
INVALID_TOKEN: int = -1

_default_rng = np.random.default_rng()


def _logits_array(logits) -> Optional[np.ndarray]:
    if logits is None:
        return None
    arr = np.asarray(logits, dtype=np.float32).reshape(-1)
    return arr if arr.size else None


# ---------------------------------------------------------------------------
# Distribution shaping
# ---------------------------------------------------------------------------

def temperature_scale(logits: np.ndarray, temperature: float) -> np.ndarray:
    """Divide *logits* by *temperature* in place.

    A temperature of 0 (or below) leaves the logits untouched.  Non-float
    or non-array input is converted first, so only float arrays are
    modified in place.
    """
    if not isinstance(logits, np.ndarray) or not np.issubdtype(logits.dtype, np.floating):
        logits = np.asarray(logits, dtype=np.float32)
    if temperature > 0:
        logits /= temperature
    return logits


def softmax(logits) -> np.ndarray:
    """Numerically stable softmax over a 1-D logit vector."""
    x = np.asarray(logits, dtype=np.float64).reshape(-1)
    if x.size == 0:
        return x
    exp = np.exp(x - x.max())
    return exp / exp.sum()


def top_k_filter(probs, k: int) -> tuple[np.ndarray, np.ndarray]:
    """Keep the *k* most probable entries and renormalise them.

    Parameters
    ----------
    probs:
        A probability distribution.
    k:
        Number of entries to keep.  ``k <= 0`` or ``k >= len(probs)``
        keeps everything unchanged.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        ``(indices, renormalised)``: vocabulary indices in descending
        probability order (equal probabilities keep their original order,
        lowest index first) and their probabilities summing to 1.
    """
    probs = np.asarray(probs, dtype=np.float64).reshape(-1)
    n = probs.size
    if k <= 0 or k >= n:
        return np.arange(n), probs

    # Stable sort: among equal probabilities the first-encountered index wins.
    indices = np.argsort(-probs, kind="stable")[:k]
    selected = probs[indices]
    return indices, selected / selected.sum()


# ---------------------------------------------------------------------------
# Token selection
# ---------------------------------------------------------------------------

def sample(distribution, rng: Optional[np.random.Generator] = None) -> int:
    """Draw an index from *distribution* by inverse-CDF sampling.

    A uniform ``r`` in ``[0, 1)`` selects the first index whose cumulative
    mass is ``>= r``; zero-mass entries are never returned.  If rounding
    leaves the cumulative sum short of ``r`` the last index is returned.
    """
    p = np.asarray(distribution, dtype=np.float64).reshape(-1)
    n = p.size
    if n == 0:
        return INVALID_TOKEN

    r = (rng or _default_rng).random()
    cumulative = np.cumsum(p)
    idx = int(np.searchsorted(cumulative, r, side="left"))
    while idx < n and p[idx] <= 0.0:
        idx += 1

    return idx if idx < n else n - 1


def greedy_decode(logits) -> int:
    """Index of the largest logit; the leftmost one on ties."""
    arr = _logits_array(logits)
    if arr is None:
        return INVALID_TOKEN
    return int(np.argmax(arr))


def sample_token(
    logits,
    temperature: float,
    top_k: int = 0,
    rng: Optional[np.random.Generator] = None,
) -> int:
    """Temperature-scale, softmax, optionally top-k filter, then sample.

    Float32 logit arrays are scaled in place.
    """
    arr = _logits_array(logits)
    if arr is None:
        return INVALID_TOKEN

    temperature_scale(arr, temperature)
    probs = softmax(arr)
    indices, probs = top_k_filter(probs, top_k)
    return int(indices[sample(probs, rng)])


def select_token(
    logits,
    config: GenerationConfig,
    rng: Optional[np.random.Generator] = None,
) -> int:
    """Pick the next token: greedy when temperature is 0, otherwise sampled."""
    if config.temperature <= 0:
        return greedy_decode(logits)
    return sample_token(logits, config.temperature, config.top_k, rng)
