"""
Audio output context: a sample clock plus a scheduled-buffer mixer.

Model:
- `current_time` is the output clock in seconds, derived from the number
  of frames rendered so far (like a browser AudioContext's currentTime).
  It only advances when a driver pulls audio via render().
- A ScheduledBuffer is an immutable block of float32 samples placed at a
  start time on that clock, routed to one or more destinations.
- render(frames) mixes everything overlapping the next `frames` samples,
  per destination, advances the clock, and retires finished buffers.

Threading:
- render() runs on the audio device thread; scheduling and stop() run on
  the event loop. The buffer list is guarded by a threading.Lock.
- "ended" callbacks are delivered through `notify` (normally
  loop.call_soon_threadsafe), never invoked on the audio thread.

Destinations:
- LocalPlaybackDevice: sounddevice OutputStream, drives the clock.
- VirtualOutputStream: PCM16 blocks for a media-transport publisher.
"""

from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional

import numpy as np

from audio.pcm import float_to_int16
from observability.logger import log_event
from spec import AUDIO_CHANNELS, OUTPUT_SAMPLE_RATE_HZ, PLAYBACK_DEVICE_BLOCK_FRAMES

Notify = Callable[[Callable[[], None]], Any]


class OutputRoute(str, Enum):
    """Where a scheduled buffer is audible."""
    LOCAL = "local"
    TRANSPORT = "transport"


class ScheduledBuffer:
    """
    One decoded chunk on the output timeline.

    Created by AudioOutputContext.create_buffer(); placed with start().
    """

    def __init__(
        self,
        context: AudioOutputContext,
        samples: np.ndarray,
        routes: frozenset[OutputRoute],
    ) -> None:
        self._context = context
        self.samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        self.samples.setflags(write=False)
        self.routes = routes
        self.start_frame: int | None = None
        self.ended = False
        self._callbacks: list[Callable[[ScheduledBuffer], None]] = []

    @property
    def frame_count(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return self.frame_count / self._context.sample_rate

    @property
    def start_time(self) -> float | None:
        if self.start_frame is None:
            return None
        return self.start_frame / self._context.sample_rate

    def add_done_callback(self, fn: Callable[[ScheduledBuffer], None]) -> None:
        self._callbacks.append(fn)

    def stop(self) -> None:
        """Stop immediately; fires the ended callbacks if not already ended."""
        self._context.stop(self)

    def _fire_ended(self) -> None:
        if self.ended:
            return
        self.ended = True
        callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            fn(self)


class AudioOutputContext:
    """
    Output clock + mixer at a fixed sample rate.
    """

    def __init__(
        self,
        sample_rate: int = OUTPUT_SAMPLE_RATE_HZ,
        *,
        notify: Notify | None = None,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        self.sample_rate = sample_rate
        self._notify: Notify | None = notify
        self._lock = threading.Lock()
        self._frames_rendered = 0
        self._active: list[ScheduledBuffer] = []

    def bind_notify(self, notify: Notify) -> None:
        """Route ended callbacks (e.g. loop.call_soon_threadsafe)."""
        self._notify = notify

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    # -------------------------
    # Scheduling (event loop)
    # -------------------------

    def create_buffer(
        self,
        samples: np.ndarray,
        routes: frozenset[OutputRoute] = frozenset({OutputRoute.LOCAL}),
    ) -> ScheduledBuffer:
        return ScheduledBuffer(self, samples, routes)

    def start(self, buffer: ScheduledBuffer, at_time: float) -> None:
        """
        Place `buffer` on the timeline. A start time in the past starts
        at the next rendered frame.
        """
        if buffer.start_frame is not None:
            raise RuntimeError("buffer already started")
        with self._lock:
            buffer.start_frame = max(
                int(round(at_time * self.sample_rate)),
                self._frames_rendered,
            )
            self._active.append(buffer)

    def stop(self, buffer: ScheduledBuffer) -> None:
        with self._lock:
            try:
                self._active.remove(buffer)
            except ValueError:
                pass
        self._deliver_ended([buffer])

    # -------------------------
    # Rendering (audio thread)
    # -------------------------

    def render(self, frames: int) -> dict[OutputRoute, np.ndarray]:
        """
        Mix the next `frames` samples for every destination and advance
        the clock.
        """
        mixes = {route: np.zeros(frames, dtype=np.float32) for route in OutputRoute}
        finished: list[ScheduledBuffer] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames

            remaining: list[ScheduledBuffer] = []
            for buffer in self._active:
                start = buffer.start_frame or 0
                end = start + buffer.frame_count

                lo = max(start, block_start)
                hi = min(end, block_end)
                if lo < hi:
                    chunk = buffer.samples[lo - start:hi - start]
                    for route in buffer.routes:
                        mixes[route][lo - block_start:hi - block_start] += chunk

                if end <= block_end:
                    finished.append(buffer)
                else:
                    remaining.append(buffer)

            self._active = remaining
            self._frames_rendered = block_end

        self._deliver_ended(finished)
        return mixes

    def _deliver_ended(self, buffers: list[ScheduledBuffer]) -> None:
        for buffer in buffers:
            if self._notify is None:
                buffer._fire_ended()  # pylint: disable=protected-access
            else:
                self._notify(buffer._fire_ended)  # pylint: disable=protected-access


# ---------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------

class VirtualOutputStream:
    """
    Bounded, thread-safe PCM16 block stream for a media-transport publisher.

    The device thread pushes; the publisher reads. When the reader falls
    behind, the oldest blocks are dropped.
    """

    def __init__(self, sample_rate: int = OUTPUT_SAMPLE_RATE_HZ, *, max_blocks: int = 256) -> None:
        self.sample_rate = sample_rate
        self._blocks: Deque[bytes] = deque(maxlen=max_blocks)
        self._lock = threading.Lock()
        self.dropped_blocks = 0

    def push(self, samples: np.ndarray) -> None:
        block = float_to_int16(samples).astype("<i2").tobytes()
        with self._lock:
            if len(self._blocks) == self._blocks.maxlen:
                self.dropped_blocks += 1
            self._blocks.append(block)

    def read(self) -> Optional[bytes]:
        with self._lock:
            if not self._blocks:
                return None
            return self._blocks.popleft()

    def drain(self) -> bytes:
        with self._lock:
            out = b"".join(self._blocks)
            self._blocks.clear()
        return out


TransportPublisher = Callable[[VirtualOutputStream], Awaitable[bool]]


class LocalPlaybackDevice:
    """
    sounddevice OutputStream that drives an AudioOutputContext.

    The device always runs while started so the clock keeps advancing,
    even when nothing is routed to local playback.
    """

    def __init__(
        self,
        context: AudioOutputContext,
        *,
        transport_stream: VirtualOutputStream | None = None,
        blocksize: int = PLAYBACK_DEVICE_BLOCK_FRAMES,
        device: Any = None,
        stream_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._context = context
        self._transport_stream = transport_stream
        self._blocksize = blocksize
        self._device = device
        self._stream_factory = stream_factory
        self._stream: Any = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return

        factory = self._stream_factory
        if factory is None:
            import sounddevice as sd  # pylint: disable=import-outside-toplevel
            factory = sd.OutputStream

        self._stream = factory(
            samplerate=self._context.sample_rate,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            blocksize=self._blocksize,
            device=self._device,
            callback=self._callback,
        )
        self._stream.start()
        log_event({
            "event_type": "PLAYBACK_DEVICE_STARTED",
            "sample_rate": self._context.sample_rate,
            "blocksize": self._blocksize,
        })

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        stream.stop()
        stream.close()
        log_event({"event_type": "PLAYBACK_DEVICE_STOPPED"})

    # -- sounddevice audio-thread callback --

    def _callback(self, outdata: np.ndarray, frames: int, _time: Any, status: Any) -> None:
        if status:
            log_event({"event_type": "PLAYBACK_DEVICE_STATUS", "status": str(status)})
        mixes = self._context.render(frames)
        outdata[:, 0] = np.clip(mixes[OutputRoute.LOCAL], -1.0, 1.0)
        if self._transport_stream is not None:
            self._transport_stream.push(mixes[OutputRoute.TRANSPORT])
