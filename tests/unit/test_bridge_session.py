# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest

import session.bridge as bridge_mod
from config import AppConfig
from session.bridge import BridgeSession
from session.lifecycle import BridgeState


class FakeUpstream:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.on_open = kwargs["on_open"]
        self.on_message = kwargs["on_message"]
        self.on_close = kwargs["on_close"]
        self.on_error = kwargs["on_error"]
        self.opened = False
        self.open_transport = False
        self.sent: list[dict[str, Any]] = []
        self.closes: list[tuple[int, str]] = []

    async def open(self) -> None:
        self.opened = True

    @property
    def is_open(self) -> bool:
        return self.open_transport

    async def send(self, frame: dict[str, Any]) -> None:
        self.sent.append(frame)

    async def close(self, code: int, reason: str) -> None:
        self.open_transport = False
        self.closes.append((code, reason))

    # -- test drivers --

    async def simulate_open(self) -> None:
        self.open_transport = True
        await self.on_open()


class FakeDownstream:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closes: list[tuple[int, str]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int, reason: str) -> None:
        self.closes.append((code, reason))


class FactoryRecorder:
    def __init__(self) -> None:
        self.created: list[FakeUpstream] = []

    def __call__(self, **kwargs: Any) -> FakeUpstream:
        upstream = FakeUpstream(**kwargs)
        self.created.append(upstream)
        return upstream


def _config(**overrides: Any) -> AppConfig:
    base: dict[str, Any] = {"enable_gemini_bridge": True, "gemini_api_key": "test-key"}
    base.update(overrides)
    return AppConfig(**base)


def _make(**overrides: Any) -> tuple[BridgeSession, FakeDownstream, FactoryRecorder]:
    downstream = FakeDownstream()
    factory = FactoryRecorder()
    bridge = BridgeSession(config=_config(**overrides), downstream=downstream, upstream_factory=factory)
    return bridge, downstream, factory


def _audio(data: str = "AAAA") -> str:
    return json.dumps({"type": "audio", "data": data, "mimeType": "audio/pcm;rate=16000"})


async def _ready_bridge() -> tuple[BridgeSession, FakeDownstream, FakeUpstream]:
    bridge, downstream, factory = _make()
    await bridge.on_ws_connect()
    upstream = factory.created[0]
    await upstream.simulate_open()
    await upstream.on_message({"setupComplete": {}})
    return bridge, downstream, upstream


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(bridge_mod, "log_event", lambda payload: None)


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------

def test_disabled_bridge_rejects_without_upstream_attempt() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make(enable_gemini_bridge=False)
        result = await bridge.on_ws_connect()

        assert result.outbound_json == ({"type": "error", "message": "Gemini bridge is disabled."},)
        assert result.close is not None
        assert (result.close.code, result.close.reason) == (1013, "Gemini bridge disabled")
        assert factory.created == []
        assert bridge.state == BridgeState.REJECTED

    asyncio.run(scenario())


def test_missing_key_rejects_without_upstream_attempt() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make(gemini_api_key=None)
        result = await bridge.on_ws_connect()

        assert result.outbound_json == (
            {"type": "error", "message": "GEMINI_API_KEY is not configured."},
        )
        assert result.close is not None
        assert (result.close.code, result.close.reason) == (1013, "Missing API key")
        assert factory.created == []

    asyncio.run(scenario())


def test_rejection_is_logged_with_reason(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(bridge_mod, "log_event", emitted.append)

    async def scenario() -> BridgeSession:
        bridge, _downstream, _factory = _make(gemini_api_key=None)
        await bridge.on_ws_connect()
        return bridge

    bridge = asyncio.run(scenario())

    rejected = [e for e in emitted if e["event_type"] == "BRIDGE_REJECTED"]
    assert rejected == [{
        "event_type": "BRIDGE_REJECTED",
        "session_id": bridge.session_id,
        "state": "REJECTED",
        "reason": "Missing API key",
        "message": "GEMINI_API_KEY is not configured.",
    }]


def test_disconnect_after_rejection_is_noop() -> None:
    async def scenario() -> None:
        bridge, _downstream, _factory = _make(enable_gemini_bridge=False)
        await bridge.on_ws_connect()
        await bridge.on_ws_disconnect("client_disconnect")
        assert bridge.state == BridgeState.REJECTED

    asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Connect / setup
# ---------------------------------------------------------------------------

def test_connect_opens_exactly_one_upstream_with_session_config() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make(gemini_model="custom-model")
        result = await bridge.on_ws_connect()

        assert result.outbound_json == ()
        assert result.close is None
        assert len(factory.created) == 1
        upstream = factory.created[0]
        assert upstream.opened
        assert upstream.kwargs["api_key"] == "test-key"
        assert upstream.kwargs["session_config"].model == "custom-model"
        assert upstream.kwargs["session_id"] == bridge.session_id
        assert bridge.state == BridgeState.UPSTREAM_CONNECTING

    asyncio.run(scenario())


def test_ready_is_sent_before_any_audio_is_accepted() -> None:
    async def scenario() -> None:
        bridge, downstream, factory = _make()
        await bridge.on_ws_connect()
        upstream = factory.created[0]
        await upstream.simulate_open()

        early = await bridge.on_json_message(_audio())
        assert early.outbound_json == ({"type": "error", "message": "Gemini session not ready."},)
        assert upstream.sent == []

        await upstream.on_message({"setupComplete": {}})
        assert downstream.sent == [
            {"type": "status", "status": "gemini_connected"},
            {"type": "ready"},
            {"type": "gemini", "message": {"setupComplete": {}}},
        ]
        assert bridge.upstream_ready

        result = await bridge.on_json_message(_audio("QUJD"))
        assert result.outbound_json == ()
        assert upstream.sent == [
            {"realtimeInput": {"audio": {"data": "QUJD", "mimeType": "audio/pcm;rate=16000"}}}
        ]

    asyncio.run(scenario())


def test_every_upstream_frame_is_forwarded_in_envelope() -> None:
    async def scenario() -> None:
        _bridge, downstream, upstream = await _ready_bridge()
        frame = {"serverContent": {"modelTurn": {"parts": []}}, "somethingNew": 1}
        await upstream.on_message(frame)
        assert downstream.sent[-1] == {"type": "gemini", "message": frame}

    asyncio.run(scenario())


def test_second_setup_complete_does_not_resend_ready() -> None:
    async def scenario() -> None:
        _bridge, downstream, upstream = await _ready_bridge()
        await upstream.on_message({"setupComplete": {}})
        assert [m["type"] for m in downstream.sent].count("ready") == 1

    asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Client -> upstream translation
# ---------------------------------------------------------------------------

def test_ping_returns_pong_without_touching_upstream() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make()

        # before connect: no upstream at all
        result = await bridge.on_json_message(json.dumps({"type": "ping"}))
        assert result.outbound_json == ({"type": "pong"},)

        await bridge.on_ws_connect()
        result = await bridge.on_json_message(json.dumps({"type": "ping"}))
        assert result.outbound_json == ({"type": "pong"},)
        assert factory.created[0].sent == []

    asyncio.run(scenario())


def test_audio_without_data_is_recoverable_error() -> None:
    async def scenario() -> None:
        bridge, downstream, upstream = await _ready_bridge()
        result = await bridge.on_json_message(json.dumps({"type": "audio"}))

        assert result.outbound_json == ({"type": "error", "message": "audio data missing."},)
        assert result.close is None
        assert downstream.closes == []
        assert bridge.state == BridgeState.UPSTREAM_READY
        assert upstream.sent == []

    asyncio.run(scenario())


def test_unknown_type_is_recoverable_error() -> None:
    async def scenario() -> None:
        bridge, downstream, _upstream = await _ready_bridge()
        result = await bridge.on_json_message(json.dumps({"type": "dance"}))

        assert result.outbound_json == ({"type": "error", "message": "Unknown message type: dance"},)
        assert result.close is None
        assert downstream.closes == []

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "payload",
    ["not json", "[]", json.dumps({"data": "x"}), "[" * 100000 + "]" * 100000],
)
def test_malformed_frames_get_invalid_message_error(payload: str) -> None:
    async def scenario() -> None:
        bridge, _downstream, _upstream = await _ready_bridge()
        result = await bridge.on_json_message(payload)
        assert result.outbound_json == ({"type": "error", "message": "Invalid client message."},)

    asyncio.run(scenario())


def test_text_and_stream_end_are_translated() -> None:
    async def scenario() -> None:
        bridge, _downstream, upstream = await _ready_bridge()
        await bridge.on_json_message(json.dumps({"type": "text", "data": "hello"}))
        await bridge.on_json_message(json.dumps({"type": "audioStreamEnd"}))

        assert upstream.sent == [
            {
                "clientContent": {
                    "turns": [{"role": "user", "parts": [{"text": "hello"}]}],
                    "turnComplete": True,
                }
            },
            {"realtimeInput": {"audioStreamEnd": True}},
        ]

    asyncio.run(scenario())


def test_frames_before_upstream_open_get_not_ready_error() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make()
        await bridge.on_ws_connect()

        result = await bridge.on_json_message(json.dumps({"type": "text", "data": "hi"}))
        assert result.outbound_json == ({"type": "error", "message": "Gemini upstream not ready."},)
        assert factory.created[0].sent == []

    asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------

def test_upstream_close_notifies_client_then_closes_1011() -> None:
    async def scenario() -> None:
        bridge, downstream, upstream = await _ready_bridge()
        await upstream.on_close(1000, "done")

        assert downstream.sent[-1] == {
            "type": "status",
            "status": "gemini_closed",
            "code": 1000,
            "reason": "done",
        }
        assert downstream.closes == [(1011, "Gemini upstream closed")]
        assert bridge.state == BridgeState.CLOSED

        # client leaving afterwards changes nothing
        await bridge.on_ws_disconnect("client_disconnect")
        assert upstream.closes == []

    asyncio.run(scenario())


def test_upstream_error_sends_error_and_closes_both_sides() -> None:
    async def scenario() -> None:
        bridge, downstream, upstream = await _ready_bridge()
        await upstream.on_error(RuntimeError("boom"))

        assert downstream.sent[-1] == {"type": "error", "message": "Gemini upstream error."}
        assert downstream.closes == [(1011, "Gemini upstream closed")]
        assert len(upstream.closes) == 1
        assert bridge.state == BridgeState.CLOSED

    asyncio.run(scenario())


def test_client_disconnect_closes_upstream_normally() -> None:
    async def scenario() -> None:
        bridge, downstream, upstream = await _ready_bridge()
        await bridge.on_ws_disconnect("client_disconnect")

        assert upstream.closes == [(1000, "Client disconnected")]
        assert downstream.closes == []
        assert bridge.state == BridgeState.CLOSED

        # late upstream frames are ignored
        sent_before = list(downstream.sent)
        await upstream.on_message({"serverContent": {}})
        assert downstream.sent == sent_before

        result = await bridge.on_json_message(_audio())
        assert result.outbound_json == ({"type": "error", "message": "Gemini upstream not ready."},)

    asyncio.run(scenario())


def test_disconnect_while_connecting_closes_pending_upstream() -> None:
    async def scenario() -> None:
        bridge, _downstream, factory = _make()
        await bridge.on_ws_connect()
        await bridge.on_ws_disconnect("client_disconnect")

        assert factory.created[0].closes == [(1000, "Client disconnected")]
        assert bridge.state == BridgeState.CLOSED

    asyncio.run(scenario())


def test_transitions_are_logged_with_session_id(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(bridge_mod, "log_event", emitted.append)

    async def scenario() -> BridgeSession:
        bridge, _downstream, upstream = await _ready_bridge()
        await upstream.on_close(1000, "done")
        return bridge

    bridge = asyncio.run(scenario())

    transitions = [e for e in emitted if e["event_type"] == "BRIDGE_STATE_TRANSITION"]
    assert [e["state"] for e in transitions] == [
        "UPSTREAM_CONNECTING",
        "UPSTREAM_READY",
        "CLOSING",
        "CLOSED",
    ]
    assert all(e["session_id"] == bridge.session_id for e in transitions)
    assert bridge.session_id.startswith("gem_")
