# backend/protocol/client_frames.py
"""
JSON framing for the browser-facing (downstream) WebSocket.

Client -> Server (all JSON text frames):

    {"type": "ping"}
    {"type": "audio", "data": "<base64 PCM16LE>", "mimeType": "audio/pcm;rate=16000"}
    {"type": "audioStreamEnd"}
    {"type": "text", "data": "<turn content>"}

Server -> Client:

    {"type": "pong"}
    {"type": "ready"}
    {"type": "status", "status": "gemini_connected" | "gemini_closed", "code": .., "reason": ..}
    {"type": "error", "message": "<human readable>"}
    {"type": "gemini", "message": {<opaque upstream frame>}}

Usage example:

    try:
        frame = parse_client_frame(text)
    except ClientProtocolError as e:
        await downstream.send_json(error_frame(e.client_message))
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from spec import DEFAULT_AUDIO_MIME_TYPE


# -------------------------
# Exceptions
# -------------------------

class ClientProtocolError(Exception):
    """
    Base class for downstream protocol errors.

    `client_message` is the human-readable text sent back in an error frame.
    None of these errors close the connection.
    """

    client_message: str = "Invalid client message."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.client_message = message
        super().__init__(self.client_message)


class InvalidClientMessage(ClientProtocolError):
    """Raised when a frame is not a JSON object with a string `type`."""


class MissingAudioData(ClientProtocolError):
    """Raised when an `audio` frame has no (or empty) `data`."""

    client_message = "audio data missing."


class UnknownMessageType(ClientProtocolError):
    """Raised when the frame tag is not part of the client vocabulary."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Unknown message type: {tag}")


# -------------------------
# Frame types
# -------------------------

class ClientFrameType(str, Enum):
    """Tags of the client -> server vocabulary."""

    PING = "ping"
    AUDIO = "audio"
    AUDIO_STREAM_END = "audioStreamEnd"
    TEXT = "text"


class BridgeStatus(str, Enum):
    """Values of the `status` field in server -> client status frames."""

    GEMINI_CONNECTED = "gemini_connected"
    GEMINI_CLOSED = "gemini_closed"


@dataclass(frozen=True)
class Ping:
    """Keepalive; answered locally with `pong`."""


@dataclass(frozen=True)
class AudioChunk:
    """
    One chunk of microphone audio.

    data:
        base64-encoded little-endian PCM16 samples.

    mime_type:
        Rate/format descriptor forwarded upstream unchanged.
    """
    data: str
    mime_type: str = DEFAULT_AUDIO_MIME_TYPE


@dataclass(frozen=True)
class AudioStreamEnd:
    """End of the current microphone utterance."""


@dataclass(frozen=True)
class TextTurn:
    """A complete user text turn."""
    text: str


ClientFrame = Union[Ping, AudioChunk, AudioStreamEnd, TextTurn]


# -------------------------
# Client -> Server
# -------------------------

def parse_client_frame(payload: str | bytes) -> ClientFrame:
    """
    Decode one downstream JSON frame.

    Raises:
        InvalidClientMessage: not JSON, not an object, or no `type`.
        UnknownMessageType: `type` outside the vocabulary.
        MissingAudioData: `audio` frame without `data`.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise InvalidClientMessage() from e

    if not isinstance(data, dict):
        raise InvalidClientMessage()

    tag = data.get("type")
    if not tag or not isinstance(tag, str):
        raise InvalidClientMessage()

    if tag == ClientFrameType.PING.value:
        return Ping()

    if tag == ClientFrameType.AUDIO.value:
        audio = data.get("data")
        if not audio or not isinstance(audio, str):
            raise MissingAudioData()
        mime_type = data.get("mimeType") or DEFAULT_AUDIO_MIME_TYPE
        return AudioChunk(data=audio, mime_type=str(mime_type))

    if tag == ClientFrameType.AUDIO_STREAM_END.value:
        return AudioStreamEnd()

    if tag == ClientFrameType.TEXT.value:
        text = data.get("data")
        return TextTurn(text="" if text is None else str(text))

    raise UnknownMessageType(tag)


# -------------------------
# Server -> Client
# -------------------------

def pong_frame() -> dict[str, Any]:
    return {"type": "pong"}


def ready_frame() -> dict[str, Any]:
    return {"type": "ready"}


def error_frame(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}


def status_frame(
    status: BridgeStatus,
    *,
    code: int | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """
    Upstream status notice.

    `code` and `reason` are only present for `gemini_closed`.
    """
    frame: dict[str, Any] = {"type": "status", "status": status.value}
    if code is not None:
        frame["code"] = code
    if reason is not None:
        frame["reason"] = reason
    return frame


def gemini_envelope(message: dict[str, Any]) -> dict[str, Any]:
    """Wrap an upstream frame verbatim, tagged by origin."""
    return {"type": "gemini", "message": message}


# -------------------------
# Client-side encoders
# -------------------------

def audio_chunk_frame(data: str, mime_type: str = DEFAULT_AUDIO_MIME_TYPE) -> dict[str, Any]:
    return {"type": ClientFrameType.AUDIO.value, "data": data, "mimeType": mime_type}


def audio_stream_end_frame() -> dict[str, Any]:
    return {"type": ClientFrameType.AUDIO_STREAM_END.value}


def text_turn_frame(text: str) -> dict[str, Any]:
    return {"type": ClientFrameType.TEXT.value, "data": text}


def ping_frame() -> dict[str, Any]:
    return {"type": ClientFrameType.PING.value}
