"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants in the bridge.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono, 16kHz in / 24kHz out)
# =============================================================================

INPUT_SAMPLE_RATE_HZ: Final[int] = 16_000
OUTPUT_SAMPLE_RATE_HZ: Final[int] = 24_000
AUDIO_CHANNELS: Final[int] = 1

PCM16_NEGATIVE_SCALE: Final[float] = 32768.0
PCM16_POSITIVE_SCALE: Final[float] = 32767.0
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767

DEFAULT_AUDIO_MIME_TYPE: Final[str] = f"audio/pcm;rate={INPUT_SAMPLE_RATE_HZ}"

# =============================================================================
# Client capture
# =============================================================================

# Fixed block size handed from the capture worker to the event loop.
CAPTURE_BLOCK_FRAMES: Final[int] = 2048

# =============================================================================
# Playback scheduling
# =============================================================================

PLAYBACK_LEAD_IN_FIRST_S: Final[float] = 0.2
PLAYBACK_LEAD_IN_S: Final[float] = 0.02
PLAYBACK_DEVICE_BLOCK_FRAMES: Final[int] = 1024

# =============================================================================
# WebSocket close codes
# =============================================================================

CLOSE_NORMAL: Final[int] = 1000
CLOSE_ABNORMAL: Final[int] = 1006
CLOSE_UPSTREAM_GONE: Final[int] = 1011
CLOSE_SERVICE_UNAVAILABLE: Final[int] = 1013

CLOSE_REASON_DISABLED: Final[str] = "Gemini bridge disabled"
CLOSE_REASON_MISSING_KEY: Final[str] = "Missing API key"
CLOSE_REASON_UPSTREAM_CLOSED: Final[str] = "Gemini upstream closed"
CLOSE_REASON_CLIENT_DISCONNECTED: Final[str] = "Client disconnected"
CLOSE_REASON_USER_DISCONNECTED: Final[str] = "User disconnected"
CLOSE_REASON_BRIDGE_ERROR: Final[str] = "Bridge error"

# =============================================================================
# Upstream (Gemini Live)
# =============================================================================

GEMINI_DEFAULT_MODEL: Final[str] = "gemini-2.5-flash-native-audio-preview-12-2025"
GEMINI_DEFAULT_WS_ENDPOINT: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
GEMINI_MODEL_PREFIX: Final[str] = "models/"
GEMINI_RESPONSE_MODALITY: Final[str] = "AUDIO"

VAD_DEFAULT_START_SENSITIVITY: Final[str] = "START_SENSITIVITY_LOW"
VAD_DEFAULT_END_SENSITIVITY: Final[str] = "END_SENSITIVITY_LOW"
VAD_DEFAULT_PREFIX_PADDING_MS: Final[int] = 20
VAD_DEFAULT_SILENCE_DURATION_MS: Final[int] = 100

# Largest inbound upstream frame accepted (model audio turns can be large).
UPSTREAM_MAX_FRAME_BYTES: Final[int] = 2**24

# =============================================================================
# HTTP / WebSocket surface
# =============================================================================

BRIDGE_WS_PATH: Final[str] = "/gemini"
DEFAULT_APP_PORT: Final[int] = 3000
DEFAULT_CORS_ORIGIN: Final[str] = "http://localhost:5173"
