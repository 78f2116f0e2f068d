"""
Microphone capture pipeline.

    PortAudio thread                 event loop
    ----------------                 ----------
    InputStream callback  --copy-->  asyncio.Queue[CaptureFrame]
                                        |
                                     pump task: resample -> PCM16 -> base64
                                        |
                                     session.send_frame({"type": "audio", ...})

The audio callback never touches the socket; it only posts a private copy
of each block via loop.call_soon_threadsafe.

Audio is gated on session readiness twice: the callback stamps whether the
session was ready when the block was produced, and the pump checks again
at send time. A block that fails either check is dropped and counted,
never queued for later.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np

from audio.frames import CaptureFrame
from audio.pcm import encode_pcm16_base64, pcm_mime_type
from audio.resample import downsample_to_pcm16
from observability.logger import log_event, now_ms
from protocol.client_frames import audio_chunk_frame, audio_stream_end_frame
from spec import AUDIO_CHANNELS, CAPTURE_BLOCK_FRAMES

if TYPE_CHECKING:
    from client.session import ClientSession


class AudioCapturePipeline:
    """
    Owns one input device stream and the task that forwards its blocks.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        block_frames: int = CAPTURE_BLOCK_FRAMES,
        device: Any = None,
        stream_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._session = session
        self._block_frames = block_frames
        self._device = device
        self._stream_factory = stream_factory

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[CaptureFrame] | None = None
        self._stream: Any = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._native_rate: int | None = None

        self.dropped_blocks = 0
        self.sent_chunks = 0

    @property
    def running(self) -> bool:
        return self._stream is not None

    @property
    def native_rate(self) -> int | None:
        return self._native_rate

    async def start(self) -> bool:
        """
        Open the default input device at its native rate and start
        forwarding. No-op (returns False) unless the socket is open.
        """
        if self.running:
            return True
        if not self._session.is_open:
            log_event({
                "event_type": "CAPTURE_START_SKIPPED",
                "reason": "socket_not_open",
            })
            return False

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        factory = self._stream_factory
        if factory is None:
            import sounddevice as sd  # pylint: disable=import-outside-toplevel
            factory = sd.InputStream

        stream = factory(
            samplerate=None,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            blocksize=self._block_frames,
            device=self._device,
            callback=self._callback,
        )
        self._native_rate = int(stream.samplerate)
        self._stream = stream
        stream.start()

        self._pump_task = asyncio.create_task(self._pump())

        log_event({
            "event_type": "CAPTURE_STARTED",
            "native_rate": self._native_rate,
            "target_rate": self._session.input_sample_rate,
            "block_frames": self._block_frames,
        })
        return True

    async def stop(self) -> None:
        """
        Release the device, stop the pump, and signal end of stream if the
        socket is still open.
        """
        stream = self._stream
        was_running = stream is not None
        self._stream = None

        if stream is not None:
            stream.stop()
            stream.close()

        task = self._pump_task
        self._pump_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._queue = None

        if was_running and self._session.is_open:
            await self._session.send_frame(audio_stream_end_frame())

        if was_running:
            log_event({
                "event_type": "CAPTURE_STOPPED",
                "sent_chunks": self.sent_chunks,
                "dropped_blocks": self.dropped_blocks,
            })

    async def process_frame(self, frame: CaptureFrame) -> bool:
        """
        Resample, encode and send one block. Returns True if it was sent.
        """
        if not frame.session_ready or not self._session.can_send_audio:
            self.dropped_blocks += 1
            return False

        target_rate = self._session.input_sample_rate
        pcm = downsample_to_pcm16(frame.samples, frame.sample_rate, target_rate=target_rate)
        if pcm.size == 0:
            return False

        sent = await self._session.send_frame(
            audio_chunk_frame(encode_pcm16_base64(pcm), pcm_mime_type(target_rate))
        )
        if sent:
            self.sent_chunks += 1
        else:
            self.dropped_blocks += 1
        return sent

    async def _pump(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            frame = await queue.get()
            await self.process_frame(frame)

    # -- sounddevice audio-thread callback --

    def _callback(self, indata: np.ndarray, _frames: int, _time: Any, status: Any) -> None:
        if status:
            log_event({"event_type": "CAPTURE_DEVICE_STATUS", "status": str(status)})

        loop, queue, rate = self._loop, self._queue, self._native_rate
        if loop is None or queue is None or rate is None:
            return

        frame = CaptureFrame(
            samples=np.array(indata[:, 0], dtype=np.float32, copy=True),
            sample_rate=rate,
            ts_ms=now_ms(),
            session_ready=self._session.ready,
        )
        try:
            loop.call_soon_threadsafe(queue.put_nowait, frame)
        except RuntimeError:
            # loop already closed during shutdown
            pass
