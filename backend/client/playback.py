"""
Playback scheduler for model audio.

Decoded 24 kHz chunks are laid end to end on the output clock:

    start = max(now + lead_in, cursor)
    cursor = start + duration

lead_in is PLAYBACK_LEAD_IN_FIRST_S for the first chunk of a burst (to
absorb network jitter) and PLAYBACK_LEAD_IN_S afterwards. A burst ends on
interrupt().

Routing:
- local_playback: audible on the local output device
- audio_via_transport: published to the media transport's virtual stream.
  When no publisher is wired, or it refuses the stream, the chunk falls
  back to local playback.

All methods run on the event loop.
"""

from __future__ import annotations

from typing import Optional

from audio.output import (
    AudioOutputContext,
    OutputRoute,
    ScheduledBuffer,
    TransportPublisher,
    VirtualOutputStream,
)
from audio.pcm import PCMDecodeError, decode_pcm16_base64, int16_to_float32
from observability.logger import log_event
from spec import PLAYBACK_LEAD_IN_FIRST_S, PLAYBACK_LEAD_IN_S


class PlaybackScheduler:
    def __init__(
        self,
        context: AudioOutputContext,
        *,
        local_playback: bool = True,
        audio_via_transport: bool = False,
        transport_stream: VirtualOutputStream | None = None,
        publish_transport: TransportPublisher | None = None,
        session_id: str | None = None,
    ) -> None:
        self._context = context
        self._local_playback = local_playback
        self._audio_via_transport = audio_via_transport
        self._transport_stream = transport_stream
        self._publish_transport = publish_transport
        self._session_id = session_id

        self._cursor = 0.0
        self._primed = False
        self._playing: set[ScheduledBuffer] = set()

        # None = not attempted yet; publishing is attempted once.
        self._transport_published: Optional[bool] = None

    @property
    def sample_rate(self) -> int:
        return self._context.sample_rate

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def primed(self) -> bool:
        return self._primed

    @property
    def playing_count(self) -> int:
        return len(self._playing)

    async def play(self, payload: str) -> ScheduledBuffer | None:
        """
        Decode one base64 PCM16 chunk and schedule it after everything
        already queued.

        Returns the scheduled buffer, or None when the payload was
        undecodable or empty.
        """
        try:
            pcm = decode_pcm16_base64(payload)
        except PCMDecodeError as e:
            log_event({
                "event_type": "PLAYBACK_DECODE_FAILED",
                "session_id": self._session_id,
                "error": str(e),
            })
            return None

        if pcm.size == 0:
            return None

        routes = await self._resolve_routes()
        buffer = self._context.create_buffer(int16_to_float32(pcm), routes)

        lead_in = PLAYBACK_LEAD_IN_S if self._primed else PLAYBACK_LEAD_IN_FIRST_S
        start_at = max(self._context.current_time + lead_in, self._cursor)

        self._playing.add(buffer)
        buffer.add_done_callback(self._playing.discard)
        self._context.start(buffer, start_at)

        self._cursor = start_at + buffer.duration
        self._primed = True
        return buffer

    def interrupt(self) -> None:
        """
        Drop everything queued or playing and restart the timeline at now.
        """
        stopped = len(self._playing)
        for buffer in list(self._playing):
            buffer.stop()
        self._playing.clear()
        self._primed = False
        self._cursor = self._context.current_time

        log_event({
            "event_type": "PLAYBACK_INTERRUPTED",
            "session_id": self._session_id,
            "stopped_buffers": stopped,
        })

    def close(self) -> None:
        self.interrupt()
        self._transport_published = None

    async def _resolve_routes(self) -> frozenset[OutputRoute]:
        routes: set[OutputRoute] = set()
        if self._local_playback:
            routes.add(OutputRoute.LOCAL)

        if self._audio_via_transport:
            if await self._ensure_transport():
                routes.add(OutputRoute.TRANSPORT)
            else:
                routes.add(OutputRoute.LOCAL)

        return frozenset(routes)

    async def _ensure_transport(self) -> bool:
        if self._transport_published is not None:
            return self._transport_published

        published = False
        if self._publish_transport is not None and self._transport_stream is not None:
            published = bool(await self._publish_transport(self._transport_stream))

        self._transport_published = published
        if not published:
            log_event({
                "event_type": "PLAYBACK_TRANSPORT_FALLBACK",
                "session_id": self._session_id,
                "publisher_configured": self._publish_transport is not None,
            })
        return published
