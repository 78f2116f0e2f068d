"""
Route registration for the bridge.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire one BridgeSession to each WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import AppConfig
from observability.logger import log_event
from server.downstream import DownstreamConnection
from session.bridge import BridgeSession, GatewayResult
from spec import (
    BRIDGE_WS_PATH,
    CLOSE_REASON_BRIDGE_ERROR,
    CLOSE_UPSTREAM_GONE,
    INPUT_SAMPLE_RATE_HZ,
    OUTPUT_SAMPLE_RATE_HZ,
)


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/config")
    async def client_config() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        config: AppConfig = app.state.config
        return {
            "geminiModel": config.gemini_model,
            "enableGeminiBridge": config.enable_gemini_bridge,
            "geminiInputSampleRate": INPUT_SAMPLE_RATE_HZ,
            "geminiOutputSampleRate": OUTPUT_SAMPLE_RATE_HZ,
            "geminiAudioViaTransport": config.audio_via_transport,
            "geminiLocalPlayback": config.local_playback,
        }

    @app.websocket(BRIDGE_WS_PATH)
    async def gemini_bridge(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        downstream = DownstreamConnection(ws)
        bridge = BridgeSession(
            config=app.state.config,
            downstream=downstream,
            upstream_factory=app.state.upstream_factory,
        )
        downstream.session_id = bridge.session_id

        try:
            result = await bridge.on_ws_connect()
            await _flush_gateway_result(downstream, result)
            if result.close is not None:
                return

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(code=msg.get("code", 1000))

                payload = msg.get("text")
                if payload is None:
                    payload = msg.get("bytes")
                if payload is None:
                    continue

                result = await bridge.on_json_message(payload)
                await _flush_gateway_result(downstream, result)

        except WebSocketDisconnect:
            downstream.mark_disconnected()
            await bridge.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "session_id": bridge.session_id,
                "state": bridge.state.value,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await downstream.close(CLOSE_UPSTREAM_GONE, CLOSE_REASON_BRIDGE_ERROR)
            await bridge.on_ws_disconnect(reason="server_error")


async def _flush_gateway_result(
    downstream: DownstreamConnection,
    result: GatewayResult,
) -> None:
    """Send all replies produced by the bridge, then close if requested."""
    for msg in result.outbound_json:
        await downstream.send_json(msg)

    if result.close is not None:
        await downstream.close(result.close.code, result.close.reason)
