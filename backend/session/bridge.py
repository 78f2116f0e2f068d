"""
Bridge session (one downstream connection <-> one Gemini Live session).

Responsibilities:
- Owns the BridgeState lifecycle for one connection
- Rejects the connection up front when the bridge is disabled or has no key
- Opens exactly one upstream session and never re-pairs it
- Translates client frames into upstream envelopes
- Wraps every upstream frame in a `gemini` envelope for the client
- Emits the synthetic `ready` frame on setupComplete
- Propagates close/error from either side to the other
- Logs every lifecycle transition with the session id

NOT responsible for:
- Socket I/O details (DownstreamConnection / UpstreamSession)
- Retry or reconnection (there is none)
- Buffering audio that arrives before the session is ready (it is dropped)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol
from uuid import uuid4

from adapters.gemini.base import UpstreamNotOpen, UpstreamSession
from adapters.gemini.live_client import GeminiLiveClient
from observability.logger import log_event
from observability.metrics import start_timer, stop_timer
from protocol.client_frames import (
    AudioChunk,
    AudioStreamEnd,
    BridgeStatus,
    ClientProtocolError,
    Ping,
    TextTurn,
    error_frame,
    gemini_envelope,
    parse_client_frame,
    pong_frame,
    ready_frame,
    status_frame,
)
from protocol.upstream import (
    SessionConfig,
    client_text_turn_frame,
    is_setup_complete,
    realtime_audio_frame,
    realtime_audio_stream_end_frame,
)
from session.lifecycle import BridgeState
from spec import (
    CLOSE_NORMAL,
    CLOSE_REASON_CLIENT_DISCONNECTED,
    CLOSE_REASON_DISABLED,
    CLOSE_REASON_MISSING_KEY,
    CLOSE_REASON_UPSTREAM_CLOSED,
    CLOSE_SERVICE_UNAVAILABLE,
    CLOSE_UPSTREAM_GONE,
)

if TYPE_CHECKING:
    from config import AppConfig


MSG_BRIDGE_DISABLED = "Gemini bridge is disabled."
MSG_MISSING_KEY = "GEMINI_API_KEY is not configured."
MSG_UPSTREAM_NOT_READY = "Gemini upstream not ready."
MSG_SESSION_NOT_READY = "Gemini session not ready."
MSG_UPSTREAM_ERROR = "Gemini upstream error."


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _new_session_id() -> str:
    return f"gem_{uuid4().hex[:12]}"


class Downstream(Protocol):
    """What the bridge needs from the browser-facing socket."""

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int, reason: str) -> None: ...


UpstreamFactory = Callable[..., UpstreamSession]


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class CloseRequest:
    code: int
    reason: str


@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for downstream-driven boundary methods.

    outbound_json:
        JSON messages to send to the client, in order

    close:
        When set, close the client socket after sending outbound_json
    """
    outbound_json: tuple[dict[str, Any], ...] = ()
    close: CloseRequest | None = None


def _reply(*messages: dict[str, Any]) -> GatewayResult:
    return GatewayResult(outbound_json=messages)


# ------------------------------------------------------------------
# BridgeSession
# ------------------------------------------------------------------

class BridgeSession:
    """
    One bridge session == one downstream connection == one upstream session.

    Downstream-driven calls (on_ws_connect / on_json_message) return a
    GatewayResult for the route to flush. Upstream-driven callbacks write
    to the downstream directly, since they arrive outside any client request.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        downstream: Downstream,
        upstream_factory: UpstreamFactory | None = None,
    ) -> None:
        self._config = config
        self._downstream = downstream
        self._upstream_factory: UpstreamFactory = upstream_factory or GeminiLiveClient

        self.session_id: str = _new_session_id()
        self.state: BridgeState = BridgeState.INIT
        self.upstream: UpstreamSession | None = None

        self._setup_timer: str | None = None
        self._session_timer: str | None = None

    @property
    def upstream_ready(self) -> bool:
        return self.state == BridgeState.UPSTREAM_READY

    # ------------------------------------------------------------------
    # Downstream lifecycle
    # ------------------------------------------------------------------

    async def on_ws_connect(self) -> GatewayResult:
        """Called once the downstream WebSocket has been accepted."""
        log_event({
            "event_type": "BRIDGE_CLIENT_CONNECTED",
            "session_id": self.session_id,
            "state": self.state.value,
        })

        if not self._config.enable_gemini_bridge:
            return self._reject(MSG_BRIDGE_DISABLED, CLOSE_REASON_DISABLED)

        if not self._config.gemini_api_key:
            return self._reject(MSG_MISSING_KEY, CLOSE_REASON_MISSING_KEY)

        self._session_timer = start_timer("bridge_session_duration")
        self._transition(BridgeState.UPSTREAM_CONNECTING)

        self.upstream = self._upstream_factory(
            endpoint=self._config.gemini_ws_endpoint,
            api_key=self._config.gemini_api_key,
            session_config=SessionConfig.from_app_config(self._config),
            session_id=self.session_id,
            on_open=self._on_upstream_open,
            on_message=self._on_upstream_message,
            on_close=self._on_upstream_close,
            on_error=self._on_upstream_error,
        )
        await self.upstream.open()

        return GatewayResult()

    async def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Called when the downstream WebSocket goes away for any reason."""
        log_event({
            "event_type": "BRIDGE_CLIENT_DISCONNECTED",
            "session_id": self.session_id,
            "state": self.state.value,
            "reason": reason,
        })

        if self.state.is_terminal:
            return

        if self.state != BridgeState.CLOSING:
            self._transition(BridgeState.CLOSING, reason=reason)

        if self.upstream is not None:
            await self.upstream.close(CLOSE_NORMAL, CLOSE_REASON_CLIENT_DISCONNECTED)

        self._finish()

    # ------------------------------------------------------------------
    # Downstream -> upstream
    # ------------------------------------------------------------------

    async def on_json_message(self, payload: str | bytes) -> GatewayResult:
        """Translate one client frame."""
        try:
            frame = parse_client_frame(payload)
        except ClientProtocolError as e:
            log_event({
                "event_type": "CLIENT_FRAME_REJECTED",
                "session_id": self.session_id,
                "state": self.state.value,
                "error_type": type(e).__name__,
                "error": e.client_message,
            })
            return _reply(error_frame(e.client_message))

        # Keepalive never touches the upstream.
        if isinstance(frame, Ping):
            return _reply(pong_frame())

        upstream = self.upstream
        if upstream is None or self.state.is_shutting_down or not upstream.is_open:
            return _reply(error_frame(MSG_UPSTREAM_NOT_READY))

        if isinstance(frame, AudioChunk):
            if not self.upstream_ready:
                return _reply(error_frame(MSG_SESSION_NOT_READY))
            outbound = realtime_audio_frame(frame.data, frame.mime_type)
        elif isinstance(frame, AudioStreamEnd):
            outbound = realtime_audio_stream_end_frame()
        elif isinstance(frame, TextTurn):
            outbound = client_text_turn_frame(frame.text)
        else:
            raise AssertionError(f"unhandled client frame {frame!r}")

        try:
            await upstream.send(outbound)
        except UpstreamNotOpen:
            return _reply(error_frame(MSG_UPSTREAM_NOT_READY))

        return GatewayResult()

    # ------------------------------------------------------------------
    # Upstream -> downstream (callbacks)
    # ------------------------------------------------------------------

    async def _on_upstream_open(self) -> None:
        log_event({
            "event_type": "UPSTREAM_CONNECTED",
            "session_id": self.session_id,
            "state": self.state.value,
        })
        if self.state.is_shutting_down:
            return
        self._setup_timer = start_timer("upstream_setup_latency")
        await self._downstream.send_json(status_frame(BridgeStatus.GEMINI_CONNECTED))

    async def _on_upstream_message(self, message: dict[str, Any]) -> None:
        if self.state.is_shutting_down:
            return

        if is_setup_complete(message) and self.state == BridgeState.UPSTREAM_CONNECTING:
            # `ready` goes out before audio is accepted.
            await self._downstream.send_json(ready_frame())
            stop_timer(self._setup_timer, session_id=self.session_id)
            self._setup_timer = None
            self._transition(BridgeState.UPSTREAM_READY)

        await self._downstream.send_json(gemini_envelope(message))

    async def _on_upstream_close(self, code: int, reason: str) -> None:
        log_event({
            "event_type": "UPSTREAM_CLOSED",
            "session_id": self.session_id,
            "state": self.state.value,
            "code": code,
            "reason": reason,
        })
        if self.state.is_shutting_down:
            return

        self._transition(BridgeState.CLOSING, reason="upstream_closed")
        await self._downstream.send_json(
            status_frame(BridgeStatus.GEMINI_CLOSED, code=code, reason=reason)
        )
        await self._downstream.close(CLOSE_UPSTREAM_GONE, CLOSE_REASON_UPSTREAM_CLOSED)
        self._finish()

    async def _on_upstream_error(self, exc: BaseException) -> None:
        log_event({
            "event_type": "UPSTREAM_ERROR",
            "session_id": self.session_id,
            "state": self.state.value,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        if self.state.is_shutting_down:
            return

        self._transition(BridgeState.CLOSING, reason="upstream_error")
        await self._downstream.send_json(error_frame(MSG_UPSTREAM_ERROR))
        await self._downstream.close(CLOSE_UPSTREAM_GONE, CLOSE_REASON_UPSTREAM_CLOSED)
        if self.upstream is not None:
            await self.upstream.close(CLOSE_UPSTREAM_GONE, CLOSE_REASON_UPSTREAM_CLOSED)
        self._finish()

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _reject(self, message: str, close_reason: str) -> GatewayResult:
        self._transition(BridgeState.REJECTED, reason=close_reason)
        log_event({
            "event_type": "BRIDGE_REJECTED",
            "session_id": self.session_id,
            "state": self.state.value,
            "reason": close_reason,
            "message": message,
        })
        return GatewayResult(
            outbound_json=(error_frame(message),),
            close=CloseRequest(code=CLOSE_SERVICE_UNAVAILABLE, reason=close_reason),
        )

    def _finish(self) -> None:
        stop_timer(self._setup_timer, session_id=self.session_id)
        self._setup_timer = None
        self._transition(BridgeState.CLOSED)
        stop_timer(self._session_timer, session_id=self.session_id)
        self._session_timer = None

    def _transition(self, new_state: BridgeState, **details: Any) -> None:
        old_state = self.state
        self.state = new_state
        log_event({
            "event_type": "BRIDGE_STATE_TRANSITION",
            "session_id": self.session_id,
            "from_state": old_state.value,
            "state": new_state.value,
            **details,
        })
