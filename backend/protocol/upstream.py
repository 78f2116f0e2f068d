# backend/protocol/upstream.py
"""
Gemini Live (BidiGenerateContent) frame helpers.

Bridge -> Gemini:

    {"setup": {...}}                                   once, at socket open
    {"realtimeInput": {"audio": {"data", "mimeType"}}}
    {"realtimeInput": {"audioStreamEnd": true}}
    {"clientContent": {"turns": [...], "turnComplete": true}}

Gemini -> Bridge (only the keys the bridge and client act on):

    {"setupComplete": {}}
    {"serverContent": {"interrupted", "inputTranscription", "outputTranscription",
                       "modelTurn": {"parts": [{"inlineData": {"data"}}, {"text"}]}}}
    {"goAway": {...}}
    {"usageMetadata": {"totalTokenCount": ..}}

Inbound frames stay plain dicts end to end; `ServerContentView` is a
read-only lens over the known fields, so new upstream keys pass through the
bridge untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from spec import (
    DEFAULT_AUDIO_MIME_TYPE,
    GEMINI_MODEL_PREFIX,
    GEMINI_RESPONSE_MODALITY,
    VAD_DEFAULT_END_SENSITIVITY,
    VAD_DEFAULT_PREFIX_PADDING_MS,
    VAD_DEFAULT_SILENCE_DURATION_MS,
    VAD_DEFAULT_START_SENSITIVITY,
)


# -------------------------
# Exceptions
# -------------------------

class UpstreamProtocolError(Exception):
    """Raised when an upstream payload is not a JSON object."""


# -------------------------
# Session configuration
# -------------------------

def normalize_model_name(model: str) -> str:
    """Return the canonical `models/<name>` form."""
    if model.startswith(GEMINI_MODEL_PREFIX):
        return model
    return f"{GEMINI_MODEL_PREFIX}{model}"


@dataclass(frozen=True)
class SessionConfig:
    """
    Parameters fixed at session start and sent once in the setup frame.
    """
    model: str
    response_modalities: tuple[str, ...] = (GEMINI_RESPONSE_MODALITY,)
    input_transcription: bool = True
    output_transcription: bool = True
    vad_start_sensitivity: str = VAD_DEFAULT_START_SENSITIVITY
    vad_end_sensitivity: str = VAD_DEFAULT_END_SENSITIVITY
    vad_prefix_padding_ms: int = VAD_DEFAULT_PREFIX_PADDING_MS
    vad_silence_duration_ms: int = VAD_DEFAULT_SILENCE_DURATION_MS

    @classmethod
    def from_app_config(cls, config: Any) -> SessionConfig:
        """Build from an `AppConfig` (typed loosely to avoid an import cycle)."""
        return cls(
            model=config.gemini_model,
            vad_start_sensitivity=config.vad_start_sensitivity,
            vad_end_sensitivity=config.vad_end_sensitivity,
            vad_prefix_padding_ms=config.vad_prefix_padding_ms,
            vad_silence_duration_ms=config.vad_silence_duration_ms,
        )


def build_setup_frame(config: SessionConfig) -> dict[str, Any]:
    """Build the one-time `setup` frame."""
    setup: dict[str, Any] = {
        "model": normalize_model_name(config.model),
        "generationConfig": {
            "responseModalities": list(config.response_modalities),
        },
        "realtimeInputConfig": {
            "automaticActivityDetection": {
                "disabled": False,
                "startOfSpeechSensitivity": config.vad_start_sensitivity,
                "endOfSpeechSensitivity": config.vad_end_sensitivity,
                "prefixPaddingMs": config.vad_prefix_padding_ms,
                "silenceDurationMs": config.vad_silence_duration_ms,
            },
        },
    }
    if config.input_transcription:
        setup["inputAudioTranscription"] = {}
    if config.output_transcription:
        setup["outputAudioTranscription"] = {}
    return {"setup": setup}


# -------------------------
# Bridge -> Gemini
# -------------------------

def realtime_audio_frame(data: str, mime_type: str = DEFAULT_AUDIO_MIME_TYPE) -> dict[str, Any]:
    return {"realtimeInput": {"audio": {"data": data, "mimeType": mime_type}}}


def realtime_audio_stream_end_frame() -> dict[str, Any]:
    return {"realtimeInput": {"audioStreamEnd": True}}


def client_text_turn_frame(text: str) -> dict[str, Any]:
    """A single complete user turn."""
    return {
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"text": text}]}],
            "turnComplete": True,
        }
    }


# -------------------------
# Gemini -> Bridge
# -------------------------

def parse_upstream_frame(raw: str | bytes) -> dict[str, Any]:
    """
    Decode one upstream frame.

    Gemini delivers JSON in both text and binary WebSocket frames.

    Raises:
        UpstreamProtocolError if the payload is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise UpstreamProtocolError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise UpstreamProtocolError(f"expected object, got {type(data).__name__}")

    return data


def is_setup_complete(message: dict[str, Any]) -> bool:
    return "setupComplete" in message


@dataclass(frozen=True)
class ServerContentView:
    """
    Known fields of one upstream frame, as consumed by the client.
    """
    interrupted: bool = False
    input_transcription: str | None = None
    output_transcription: str | None = None
    audio_payloads: tuple[str, ...] = ()
    text_parts: tuple[str, ...] = ()
    go_away: dict[str, Any] | None = None
    usage_metadata: dict[str, Any] | None = None
    extra_keys: frozenset[str] = field(default_factory=frozenset)


_KNOWN_KEYS = frozenset({"setupComplete", "serverContent", "goAway", "usageMetadata"})


def _transcription_text(value: Any) -> str | None:
    if isinstance(value, dict):
        text = value.get("text")
        if isinstance(text, str) and text:
            return text
    return None


def view_server_content(message: dict[str, Any]) -> ServerContentView:
    """
    Pattern-match the known fields of an upstream frame.

    Never raises: missing or mistyped fields read as absent.
    """
    content = message.get("serverContent")
    if not isinstance(content, dict):
        content = {}

    audio: list[str] = []
    texts: list[str] = []
    model_turn = content.get("modelTurn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    if isinstance(parts, list):
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData")
            if isinstance(inline, dict) and inline.get("data"):
                audio.append(str(inline["data"]))
            if isinstance(part.get("text"), str) and part["text"]:
                texts.append(part["text"])

    go_away = message.get("goAway")
    usage = message.get("usageMetadata")

    return ServerContentView(
        interrupted=bool(content.get("interrupted")),
        input_transcription=_transcription_text(content.get("inputTranscription")),
        output_transcription=_transcription_text(content.get("outputTranscription")),
        audio_payloads=tuple(audio),
        text_parts=tuple(texts),
        go_away=go_away if isinstance(go_away, dict) else None,
        usage_metadata=usage if isinstance(usage, dict) else None,
        extra_keys=frozenset(message.keys()) - _KNOWN_KEYS,
    )
