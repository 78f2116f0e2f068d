"""PCM16 conversion and base64 transport utilities."""
from __future__ import annotations

import base64
import binascii

import numpy as np

from spec import (
    PCM16_MAX,
    PCM16_MIN,
    PCM16_NEGATIVE_SCALE,
    PCM16_POSITIVE_SCALE,
)


class PCMDecodeError(ValueError):
    """Raised when a base64 audio payload cannot be decoded."""


def int16_to_float32(samples: np.ndarray) -> np.ndarray:
    """Normalize signed 16-bit samples by 32768."""
    return samples.astype(np.float32) / PCM16_NEGATIVE_SCALE


def float_to_int16(samples: np.ndarray) -> np.ndarray:
    """
    Quantize float samples to int16.

    Clamp to [-1, 1], scale negatives by 32768 and positives by 32767,
    round to nearest.
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(
        clamped < 0,
        clamped * PCM16_NEGATIVE_SCALE,
        clamped * PCM16_POSITIVE_SCALE,
    )
    return np.clip(np.rint(scaled), PCM16_MIN, PCM16_MAX).astype(np.int16)


def encode_pcm16_base64(samples: np.ndarray) -> str:
    """Pack int16 samples little-endian and base64-encode them."""
    return base64.b64encode(np.asarray(samples, dtype="<i2").tobytes()).decode("ascii")


def decode_pcm16_base64(payload: str) -> np.ndarray:
    """
    Decode a base64 PCM16LE payload into int16 samples.

    Raises:
        PCMDecodeError if the payload is not valid base64.
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PCMDecodeError(f"invalid base64 audio payload: {e}") from e

    if len(raw) % 2 != 0:
        raw = raw[: len(raw) - 1]
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


def pcm_mime_type(sample_rate: int) -> str:
    """MIME descriptor for raw PCM16 at `sample_rate`."""
    return f"audio/pcm;rate={sample_rate}"
