"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No bridge logic
- No protocol constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    DEFAULT_APP_PORT,
    DEFAULT_CORS_ORIGIN,
    GEMINI_DEFAULT_MODEL,
    GEMINI_DEFAULT_WS_ENDPOINT,
    VAD_DEFAULT_END_SENSITIVITY,
    VAD_DEFAULT_PREFIX_PADDING_MS,
    VAD_DEFAULT_SILENCE_DURATION_MS,
    VAD_DEFAULT_START_SENSITIVITY,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the route layer and each BridgeSession.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = DEFAULT_APP_PORT
    cors_origin: str = DEFAULT_CORS_ORIGIN

    # ------------------------------------------------------------------
    # Gemini bridge
    # ------------------------------------------------------------------

    enable_gemini_bridge: bool = False
    gemini_api_key: str | None = None
    gemini_model: str = GEMINI_DEFAULT_MODEL
    gemini_ws_endpoint: str = GEMINI_DEFAULT_WS_ENDPOINT

    # ------------------------------------------------------------------
    # Upstream voice activity detection
    # ------------------------------------------------------------------

    vad_start_sensitivity: str = VAD_DEFAULT_START_SENSITIVITY
    vad_end_sensitivity: str = VAD_DEFAULT_END_SENSITIVITY
    vad_prefix_padding_ms: int = VAD_DEFAULT_PREFIX_PADDING_MS
    vad_silence_duration_ms: int = VAD_DEFAULT_SILENCE_DURATION_MS

    # ------------------------------------------------------------------
    # Client audio routing (advertised via /config)
    # ------------------------------------------------------------------

    audio_via_transport: bool = False
    local_playback: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is not an integer.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            host=os.environ.get("APP_HOST", "0.0.0.0"),
            port=int(os.environ.get("APP_PORT", str(DEFAULT_APP_PORT))),
            cors_origin=os.environ.get("CORS_ORIGIN", DEFAULT_CORS_ORIGIN),

            enable_gemini_bridge=os.environ.get("ENABLE_GEMINI_BRIDGE") == "1",
            gemini_api_key=os.environ.get("GEMINI_API_KEY") or None,
            gemini_model=os.environ.get("GEMINI_LIVE_MODEL", GEMINI_DEFAULT_MODEL),
            gemini_ws_endpoint=os.environ.get(
                "GEMINI_LIVE_WS_ENDPOINT", GEMINI_DEFAULT_WS_ENDPOINT
            ),

            vad_start_sensitivity=os.environ.get(
                "GEMINI_VAD_START_SENSITIVITY", VAD_DEFAULT_START_SENSITIVITY
            ),
            vad_end_sensitivity=os.environ.get(
                "GEMINI_VAD_END_SENSITIVITY", VAD_DEFAULT_END_SENSITIVITY
            ),
            vad_prefix_padding_ms=int(os.environ.get(
                "GEMINI_VAD_PREFIX_PADDING_MS", str(VAD_DEFAULT_PREFIX_PADDING_MS)
            )),
            vad_silence_duration_ms=int(os.environ.get(
                "GEMINI_VAD_SILENCE_DURATION_MS", str(VAD_DEFAULT_SILENCE_DURATION_MS)
            )),

            audio_via_transport=os.environ.get("GEMINI_AUDIO_VIA_TRANSPORT") == "1",
            local_playback=os.environ.get("GEMINI_LOCAL_PLAYBACK") != "0",
        )
