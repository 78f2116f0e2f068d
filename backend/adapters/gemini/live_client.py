"""
Gemini Live upstream session client.

Core model:
- One WebSocket to the BidiGenerateContent endpoint per bridge session.
- The API key travels as the `key` query parameter.
- Exactly one setup frame is sent, immediately after the socket opens.
- Every inbound frame is parsed as JSON and handed to on_message; frames
  that fail to parse are dropped with an UPSTREAM_PARSE_FAILED log line and
  never reach the client.

Lifecycle callbacks:
- on_open: socket open and setup sent
- on_close(code, reason): remote close or connection loss (1006 when no
  close frame was received). Not fired for closes we initiate.
- on_error(exc): connect failure or unexpected receive-loop failure

Design constraints:
- No retry. Restoring a session is the client's job.
- Adapter must not touch the downstream socket or bridge state.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State as WsState

from adapters.gemini.base import (
    OnClose,
    OnError,
    OnMessage,
    OnOpen,
    UpstreamNotOpen,
    UpstreamSession,
)
from observability.logger import log_event
from protocol.upstream import (
    SessionConfig,
    UpstreamProtocolError,
    build_setup_frame,
    parse_upstream_frame,
)
from spec import CLOSE_ABNORMAL, UPSTREAM_MAX_FRAME_BYTES


def build_upstream_url(endpoint: str, api_key: str) -> str:
    """Attach the credential as a query parameter, keeping any existing ones."""
    parts = urllib.parse.urlsplit(endpoint)
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query.append(("key", api_key))
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


class GeminiLiveClient(UpstreamSession):
    """
    Single-use Gemini Live WebSocket session.

    Public interface:
    - open(): schedule connect + setup + receive loop
    - send(frame): JSON-encode and send
    - close(code, reason): local close
    """

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        session_config: SessionConfig,
        session_id: str,
        on_open: OnOpen,
        on_message: OnMessage,
        on_close: OnClose,
        on_error: OnError,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._session_config = session_config
        self._session_id = session_id

        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error

        self._ws: ClientConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._closing: bool = False

    # -------------------------------------------------------------------------
    # UpstreamSession
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        if self._task is not None:
            raise RuntimeError("upstream session already opened")
        self._task = asyncio.create_task(self._run())

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is WsState.OPEN

    async def send(self, frame: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or ws.state is not WsState.OPEN:
            raise UpstreamNotOpen("gemini upstream is not open")
        try:
            await ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise UpstreamNotOpen("gemini upstream closed during send") from e

    async def close(self, code: int, reason: str) -> None:
        if self._closing:
            return
        self._closing = True

        ws = self._ws
        if ws is not None and ws.state is WsState.OPEN:
            try:
                await ws.close(code=code, reason=reason)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "UPSTREAM_CLOSE_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })

        # A pending connect (or a receive loop still draining) is abandoned.
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # Background task
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        url = build_upstream_url(self._endpoint, self._api_key)

        try:
            self._ws = await ws_connect(
                url,
                max_size=UPSTREAM_MAX_FRAME_BYTES,
                ping_interval=None,
            )
            await self._ws.send(json.dumps(build_setup_frame(self._session_config)))
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            if not self._closing:
                await self._on_error(e)
            return

        await self._on_open()
        await self._recv_loop(self._ws)

    async def _recv_loop(self, ws: ClientConnection) -> None:
        """
        Parse and forward inbound frames until the socket closes.
        """
        try:
            async for raw in ws:
                try:
                    message = parse_upstream_frame(raw)
                except UpstreamProtocolError as e:
                    log_event({
                        "event_type": "UPSTREAM_PARSE_FAILED",
                        "session_id": self._session_id,
                        "error": str(e),
                    })
                    continue

                await self._on_message(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            if not self._closing:
                code = e.rcvd.code if e.rcvd is not None else CLOSE_ABNORMAL
                reason = e.rcvd.reason if e.rcvd is not None else ""
                await self._on_close(code, reason)
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            if not self._closing:
                await self._on_error(e)
            return

        # Clean close: iteration ends on a normal close frame.
        if not self._closing:
            code = ws.close_code if ws.close_code is not None else CLOSE_ABNORMAL
            await self._on_close(code, ws.close_reason or "")
