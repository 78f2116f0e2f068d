# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from protocol.client_frames import (
    AudioChunk,
    AudioStreamEnd,
    BridgeStatus,
    ClientProtocolError,
    InvalidClientMessage,
    MissingAudioData,
    Ping,
    TextTurn,
    UnknownMessageType,
    audio_chunk_frame,
    parse_client_frame,
    status_frame,
    text_turn_frame,
)


def test_parse_known_frames() -> None:
    assert parse_client_frame('{"type":"ping"}') == Ping()
    assert parse_client_frame('{"type":"audioStreamEnd"}') == AudioStreamEnd()
    assert parse_client_frame('{"type":"text","data":"hi"}') == TextTurn(text="hi")
    assert parse_client_frame(
        '{"type":"audio","data":"AAAA","mimeType":"audio/pcm;rate=48000"}'
    ) == AudioChunk(data="AAAA", mime_type="audio/pcm;rate=48000")


def test_audio_mime_type_defaults_to_input_rate() -> None:
    frame = parse_client_frame('{"type":"audio","data":"AAAA"}')
    assert isinstance(frame, AudioChunk)
    assert frame.mime_type == "audio/pcm;rate=16000"


def test_bytes_payload_is_accepted() -> None:
    assert parse_client_frame(b'{"type":"ping"}') == Ping()


@pytest.mark.parametrize("payload", ["{", "42", '"ping"', "{}", '{"type": 3}', '{"type": ""}'])
def test_invalid_payloads(payload: str) -> None:
    with pytest.raises(InvalidClientMessage) as exc_info:
        parse_client_frame(payload)
    assert exc_info.value.client_message == "Invalid client message."


def test_deeply_nested_payload_is_invalid() -> None:
    with pytest.raises(InvalidClientMessage):
        parse_client_frame("[" * 100000 + "]" * 100000)


@pytest.mark.parametrize("payload", ['{"type":"audio"}', '{"type":"audio","data":""}'])
def test_audio_without_data(payload: str) -> None:
    with pytest.raises(MissingAudioData) as exc_info:
        parse_client_frame(payload)
    assert exc_info.value.client_message == "audio data missing."


def test_unknown_type_names_the_tag() -> None:
    with pytest.raises(UnknownMessageType) as exc_info:
        parse_client_frame('{"type":"video"}')
    assert exc_info.value.client_message == "Unknown message type: video"
    assert isinstance(exc_info.value, ClientProtocolError)


def test_status_frame_only_carries_code_when_given() -> None:
    assert status_frame(BridgeStatus.GEMINI_CONNECTED) == {
        "type": "status",
        "status": "gemini_connected",
    }
    assert status_frame(BridgeStatus.GEMINI_CLOSED, code=1006, reason="") == {
        "type": "status",
        "status": "gemini_closed",
        "code": 1006,
        "reason": "",
    }


def test_client_encoders_parse_back() -> None:
    audio = json.dumps(audio_chunk_frame("QUJD", "audio/pcm;rate=16000"))
    assert parse_client_frame(audio) == AudioChunk(data="QUJD", mime_type="audio/pcm;rate=16000")
    assert parse_client_frame(json.dumps(text_turn_frame("yo"))) == TextTurn(text="yo")
