"""
Capture-side rate conversion (pure).

Turns native-rate float samples from the microphone into int16 samples at
the bridge input rate.

Algorithm:
- Same rate: quantize directly.
- Otherwise: ratio = native_rate / target_rate. Output length is
  round(len / ratio). Output sample i is the mean of the input samples in
  [round(i * ratio), round((i + 1) * ratio)), clipped to the input length.
  An empty window yields 0.

No anti-alias filter beyond the box average; the target rate is always
below typical device rates.

Rounding of lengths and window edges is half-up (not banker's rounding)
so window boundaries do not wobble between even and odd indices.
"""

from __future__ import annotations

import numpy as np

from audio.pcm import float_to_int16
from spec import INPUT_SAMPLE_RATE_HZ


def _round_half_up(values: np.ndarray | float) -> np.ndarray:
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5).astype(np.int64)


def downsample_to_pcm16(
    samples: np.ndarray,
    sample_rate: int,
    *,
    target_rate: int = INPUT_SAMPLE_RATE_HZ,
) -> np.ndarray:
    """
    Box-filter decimate float samples to `target_rate` and quantize.

    Args:
        samples: mono float samples, nominally in [-1, 1].
        sample_rate: native rate of `samples`.
        target_rate: output rate.

    Returns:
        int16 array at `target_rate`.

    Raises:
        ValueError if either rate is not positive.
    """
    if sample_rate <= 0 or target_rate <= 0:
        raise ValueError(f"invalid rates: {sample_rate} -> {target_rate}")

    buffer = np.asarray(samples, dtype=np.float64).reshape(-1)

    if sample_rate == target_rate:
        return float_to_int16(buffer)

    ratio = sample_rate / target_rate
    out_len = int(_round_half_up(len(buffer) / ratio))
    if out_len == 0:
        return np.zeros(0, dtype=np.int16)

    ends = np.minimum(_round_half_up(np.arange(1, out_len + 1) * ratio), len(buffer))
    starts = np.concatenate(([0], ends[:-1]))
    starts = np.minimum(starts, ends)

    cumulative = np.concatenate(([0.0], np.cumsum(buffer)))
    sums = cumulative[ends] - cumulative[starts]
    counts = ends - starts
    averages = sums / np.maximum(1, counts)

    return float_to_int16(averages)
