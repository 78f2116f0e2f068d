"""
Browser-facing WebSocket wrapper.

Responsibilities:
- Serialize outbound frames as JSON text
- Close with an explicit code/reason, at most once
- Swallow (and log) sends after the peer has gone, so upstream callbacks
  racing a client disconnect cannot crash the upstream task

Inbound frames are parsed by BridgeSession via protocol.client_frames.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from observability.logger import log_event


class DownstreamConnection:
    """
    One accepted FastAPI WebSocket.

    Safe to call from both the route's receive loop and upstream callbacks:
    the event loop serializes them, and every frame is a single ASGI send.
    """

    def __init__(self, ws: WebSocket, *, session_id: str | None = None) -> None:
        self._ws = ws
        self.session_id = session_id
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.application_state == WebSocketState.CONNECTED
            and self._ws.client_state == WebSocketState.CONNECTED
        )

    def mark_disconnected(self) -> None:
        """The peer is gone; further sends and closes become no-ops."""
        self._closed = True

    async def send_json(self, payload: dict[str, Any]) -> None:
        if not self.is_open:
            log_event({
                "event_type": "DOWNSTREAM_SEND_SKIPPED",
                "session_id": self.session_id,
                "frame_type": payload.get("type"),
            })
            return

        try:
            await self._ws.send_text(json.dumps(payload))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._closed = True
            log_event({
                "event_type": "DOWNSTREAM_SEND_FAILED",
                "session_id": self.session_id,
                "frame_type": payload.get("type"),
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def close(self, code: int, reason: str) -> None:
        if not self.is_open:
            return
        self._closed = True
        try:
            await self._ws.close(code=code, reason=reason)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "DOWNSTREAM_CLOSE_FAILED",
                "session_id": self.session_id,
                "code": code,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
