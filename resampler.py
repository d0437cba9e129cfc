"""Waveform helpers: linear-interpolation resampling and mono downmix.

Linear interpolation is not band-limited; Whisper tolerates the small amount
of aliasing and it keeps the stop-to-text latency low.
"""

from __future__ import annotations

import math

import numpy as np

TARGET_SAMPLE_RATE = 16000


def resample(samples: np.ndarray, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Resample a mono float waveform from source_rate to target_rate.

    Returns ``samples`` itself when the rates match. Otherwise the output has
    ``len(samples) / ratio`` samples with halves rounded up, where
    ``ratio = source / target``. Each output sample interpolates between the
    floor and ceil source neighbours, with the ceil index clamped to the last
    input sample.
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(f"sample rates must be positive: {source_rate} -> {target_rate}")
    if source_rate == target_rate:
        return samples

    data = np.asarray(samples, dtype=np.float32)
    n = data.shape[0]
    ratio = source_rate / target_rate
    out_len = int(math.floor(n / ratio + 0.5))
    if n == 0 or out_len == 0:
        return np.zeros(0, dtype=np.float32)

    src_index = np.arange(out_len, dtype=np.float64) * ratio
    lo = np.minimum(np.floor(src_index).astype(np.int64), n - 1)
    hi = np.minimum(lo + 1, n - 1)
    t = src_index - np.floor(src_index)
    out = data[lo] * (1.0 - t) + data[hi] * t
    return out.astype(np.float32)


def downmix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """Average interleaved channels into a single float32 channel."""
    data = np.asarray(samples, dtype=np.float32)
    if channels <= 1:
        return data
    usable = (data.shape[0] // channels) * channels
    return data[:usable].reshape(-1, channels).mean(axis=1).astype(np.float32)
