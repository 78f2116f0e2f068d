"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class CaptureFrame:
    """
    One fixed-size block from the microphone worker.

    samples:
        Mono float32 samples at the device's native rate. A private copy;
        the worker never reuses this memory.

    sample_rate:
        Native capture rate in Hz (resampled downstream).

    ts_ms:
        Wall-clock timestamp (milliseconds) when the block was captured.
        Used for observability only (not control logic).

    session_ready:
        Whether the session could accept audio when the device produced
        the block. A block captured before readiness is never sent, even
        if the session becomes ready while it waits in the queue.
    """
    samples: np.ndarray
    sample_rate: int
    ts_ms: int
    session_ready: bool = True
