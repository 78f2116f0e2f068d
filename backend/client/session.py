"""
Client side of the bridge.

ClientSession is the explicit per-connection state (socket, readiness,
negotiated rates). BridgeClient owns the receive loop and dispatches the
server's frames:

    ready   -> mark ready, start the microphone
    status  -> logged
    error   -> logged
    gemini  -> interruption flush, transcripts, model audio, goAway, usage

Everything here runs on the event loop.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State as WsState

from client.capture import AudioCapturePipeline
from client.playback import PlaybackScheduler
from observability.logger import log_event
from protocol.client_frames import text_turn_frame
from protocol.upstream import view_server_content
from spec import (
    CLOSE_NORMAL,
    CLOSE_REASON_USER_DISCONNECTED,
    INPUT_SAMPLE_RATE_HZ,
    OUTPUT_SAMPLE_RATE_HZ,
)

TranscriptCallback = Callable[[str, str], None]


@dataclass
class ClientSession:
    ws: Optional[ClientConnection] = None
    ready: bool = False
    input_sample_rate: int = INPUT_SAMPLE_RATE_HZ
    output_sample_rate: int = OUTPUT_SAMPLE_RATE_HZ

    @property
    def is_open(self) -> bool:
        return self.ws is not None and self.ws.state is WsState.OPEN

    @property
    def can_send_audio(self) -> bool:
        return self.ready and self.is_open

    async def send_frame(self, frame: dict[str, Any]) -> bool:
        """Serialize and send one frame. Returns False if it was not sent."""
        ws = self.ws
        if ws is None or not self.is_open:
            return False
        try:
            await ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            log_event({
                "event_type": "CLIENT_SEND_FAILED",
                "frame_type": frame.get("type"),
                "error": str(e),
            })
            return False
        return True


class BridgeClient:
    def __init__(
        self,
        session: ClientSession,
        *,
        scheduler: PlaybackScheduler,
        capture: AudioCapturePipeline | None = None,
        on_transcript: TranscriptCallback | None = None,
        on_ready: Callable[[], None] | None = None,
        start_capture_on_ready: bool = True,
    ) -> None:
        if scheduler.sample_rate != session.output_sample_rate:
            raise ValueError(
                f"playback runs at {scheduler.sample_rate} Hz but the session "
                f"expects {session.output_sample_rate} Hz model audio"
            )
        self.session = session
        self.scheduler = scheduler
        self.capture = capture
        self._on_transcript = on_transcript
        self._on_ready = on_ready
        self._start_capture_on_ready = start_capture_on_ready
        self._closed = False

    async def connect(self, url: str) -> None:
        self.session.ws = await ws_connect(url)
        self._closed = False
        log_event({"event_type": "CLIENT_CONNECTED", "url": url})

    async def run(self) -> None:
        """Receive until the server closes, then tear down."""
        ws = self.session.ws
        if ws is None:
            raise RuntimeError("not connected")

        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
                    log_event({"event_type": "CLIENT_FRAME_PARSE_FAILED", "error": str(e)})
                    continue
                if not isinstance(frame, dict):
                    log_event({"event_type": "CLIENT_FRAME_PARSE_FAILED", "error": "not an object"})
                    continue
                await self.handle_frame(frame)
        except ConnectionClosed as e:
            log_event({
                "event_type": "CLIENT_CONNECTION_LOST",
                "code": e.rcvd.code if e.rcvd else None,
                "reason": e.rcvd.reason if e.rcvd else None,
            })
        finally:
            log_event({
                "event_type": "CLIENT_DISCONNECTED",
                "code": ws.close_code,
                "reason": ws.close_reason,
            })
            await self._teardown()

    async def close(self) -> None:
        """User-initiated disconnect."""
        if self.capture is not None:
            await self.capture.stop()
        ws = self.session.ws
        if ws is not None and self.session.is_open:
            await ws.close(CLOSE_NORMAL, CLOSE_REASON_USER_DISCONNECTED)
        await self._teardown()

    async def send_text(self, text: str) -> bool:
        return await self.session.send_frame(text_turn_frame(text))

    # -------------------------
    # Dispatch
    # -------------------------

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("type")

        if frame_type == "ready":
            self.session.ready = True
            log_event({"event_type": "CLIENT_READY"})
            if self._start_capture_on_ready and self.capture is not None:
                await self.capture.start()
            if self._on_ready is not None:
                self._on_ready()
            return

        if frame_type == "status":
            log_event({
                "event_type": "CLIENT_STATUS",
                "status": frame.get("status"),
                "code": frame.get("code"),
                "reason": frame.get("reason"),
            })
            return

        if frame_type == "error":
            log_event({"event_type": "CLIENT_SERVER_ERROR", "message": frame.get("message")})
            return

        if frame_type == "pong":
            return

        if frame_type == "gemini":
            message = frame.get("message")
            if isinstance(message, dict):
                await self._handle_gemini(message)
            return

        log_event({"event_type": "CLIENT_UNKNOWN_FRAME", "frame_type": frame_type})

    async def _handle_gemini(self, message: dict[str, Any]) -> None:
        view = view_server_content(message)

        if view.interrupted:
            self.scheduler.interrupt()

        if view.input_transcription:
            self._transcript("user", view.input_transcription)
        if view.output_transcription:
            self._transcript("model", view.output_transcription)

        for payload in view.audio_payloads:
            await self.scheduler.play(payload)

        for text in view.text_parts:
            self._transcript("model", text)

        if view.go_away is not None:
            log_event({"event_type": "CLIENT_GO_AWAY", "time_left": view.go_away.get("timeLeft")})

        if view.usage_metadata is not None:
            log_event({
                "event_type": "CLIENT_USAGE",
                "total_token_count": view.usage_metadata.get("totalTokenCount"),
            })

        if view.extra_keys:
            log_event({
                "event_type": "CLIENT_UNHANDLED_MESSAGE",
                "keys": sorted(view.extra_keys),
            })

    def _transcript(self, speaker: str, text: str) -> None:
        if self._on_transcript is not None:
            self._on_transcript(speaker, text)

    async def _teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.ready = False
        if self.capture is not None:
            await self.capture.stop()
        self.scheduler.interrupt()
        self.session.ws = None
