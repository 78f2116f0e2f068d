# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig
from protocol.upstream import (
    SessionConfig,
    UpstreamProtocolError,
    build_setup_frame,
    is_setup_complete,
    normalize_model_name,
    parse_upstream_frame,
    view_server_content,
)


def test_normalize_model_name() -> None:
    assert normalize_model_name("gemini-live") == "models/gemini-live"
    assert normalize_model_name("models/gemini-live") == "models/gemini-live"


def test_setup_frame_from_app_config() -> None:
    config = AppConfig(
        gemini_model="gemini-live",
        vad_start_sensitivity="START_SENSITIVITY_HIGH",
        vad_end_sensitivity="END_SENSITIVITY_LOW",
        vad_prefix_padding_ms=40,
        vad_silence_duration_ms=300,
    )
    frame = build_setup_frame(SessionConfig.from_app_config(config))

    assert frame == {
        "setup": {
            "model": "models/gemini-live",
            "generationConfig": {"responseModalities": ["AUDIO"]},
            "realtimeInputConfig": {
                "automaticActivityDetection": {
                    "disabled": False,
                    "startOfSpeechSensitivity": "START_SENSITIVITY_HIGH",
                    "endOfSpeechSensitivity": "END_SENSITIVITY_LOW",
                    "prefixPaddingMs": 40,
                    "silenceDurationMs": 300,
                }
            },
            "inputAudioTranscription": {},
            "outputAudioTranscription": {},
        }
    }


def test_transcription_toggles() -> None:
    frame = build_setup_frame(
        SessionConfig(model="m", input_transcription=False, output_transcription=False)
    )
    assert "inputAudioTranscription" not in frame["setup"]
    assert "outputAudioTranscription" not in frame["setup"]


def test_parse_upstream_frame() -> None:
    assert parse_upstream_frame('{"setupComplete": {}}') == {"setupComplete": {}}
    assert parse_upstream_frame(b'{"goAway": {"timeLeft": "10s"}}') == {"goAway": {"timeLeft": "10s"}}
    assert is_setup_complete({"setupComplete": {}})
    assert not is_setup_complete({"serverContent": {}})


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", "null"])
def test_parse_upstream_frame_rejects_non_objects(raw: str) -> None:
    with pytest.raises(UpstreamProtocolError):
        parse_upstream_frame(raw)


def test_parse_upstream_frame_rejects_deep_nesting() -> None:
    raw = '{"a":' * 100000 + "1" + "}" * 100000
    with pytest.raises(UpstreamProtocolError):
        parse_upstream_frame(raw)


def test_view_server_content_extracts_known_fields() -> None:
    view = view_server_content({
        "serverContent": {
            "interrupted": True,
            "inputTranscription": {"text": "hello"},
            "outputTranscription": {"text": "hi there"},
            "modelTurn": {
                "parts": [
                    {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAAA"}},
                    {"text": "thinking"},
                    "junk",
                ]
            },
        },
        "usageMetadata": {"totalTokenCount": 42},
        "toolCall": {},
    })

    assert view.interrupted
    assert view.input_transcription == "hello"
    assert view.output_transcription == "hi there"
    assert view.audio_payloads == ("AAAA",)
    assert view.text_parts == ("thinking",)
    assert view.usage_metadata == {"totalTokenCount": 42}
    assert view.go_away is None
    assert view.extra_keys == frozenset({"toolCall"})


def test_view_server_content_tolerates_odd_shapes() -> None:
    view = view_server_content({"serverContent": "nope", "goAway": []})
    assert not view.interrupted
    assert view.audio_payloads == ()
    assert view.input_transcription is None
    assert view.go_away is None
