"""
Command-line bridge client.

    gemini-bridge-client --url http://localhost:3000
    gemini-bridge-client --url http://localhost:3000 --text "Hello" --no-mic

Fetches /config for rates and routing flags, connects to the /gemini
WebSocket, streams the microphone once the bridge reports ready, and plays
model audio on the default output device. Transcripts are printed.
"""

from __future__ import annotations

import argparse
import asyncio
import urllib.parse
from dataclasses import dataclass
from typing import Optional

import httpx

from audio.output import AudioOutputContext, LocalPlaybackDevice
from client.capture import AudioCapturePipeline
from client.playback import PlaybackScheduler
from client.session import BridgeClient, ClientSession
from observability.logger import log_event
from spec import BRIDGE_WS_PATH, INPUT_SAMPLE_RATE_HZ, OUTPUT_SAMPLE_RATE_HZ

DEFAULT_BASE_URL = "http://localhost:3000"
CONFIG_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class ClientConfig:
    """Server-advertised settings from GET /config."""
    model: str
    enabled: bool
    input_sample_rate: int = INPUT_SAMPLE_RATE_HZ
    output_sample_rate: int = OUTPUT_SAMPLE_RATE_HZ
    audio_via_transport: bool = False
    local_playback: bool = True


async def fetch_client_config(
    base_url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClientConfig:
    """
    GET <base_url>/config.

    Raises:
        httpx.HTTPError on transport failure or a non-2xx status.
    """
    async with httpx.AsyncClient(
        base_url=base_url,
        timeout=CONFIG_TIMEOUT_S,
        transport=transport,
    ) as client:
        resp = await client.get("/config")
        resp.raise_for_status()
        data = resp.json()

    return ClientConfig(
        model=str(data.get("geminiModel", "")),
        enabled=bool(data.get("enableGeminiBridge", False)),
        input_sample_rate=int(data.get("geminiInputSampleRate") or INPUT_SAMPLE_RATE_HZ),
        output_sample_rate=int(data.get("geminiOutputSampleRate") or OUTPUT_SAMPLE_RATE_HZ),
        audio_via_transport=bool(data.get("geminiAudioViaTransport", False)),
        local_playback=bool(data.get("geminiLocalPlayback", True)),
    )


def to_ws_url(base_url: str) -> str:
    """http(s)://host[/prefix] -> ws(s)://host[/prefix]/gemini"""
    parts = urllib.parse.urlsplit(base_url)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    path = parts.path.rstrip("/") + BRIDGE_WS_PATH
    return urllib.parse.urlunsplit((scheme, parts.netloc, path, "", ""))


def _print_transcript(speaker: str, text: str) -> None:
    print(f"[{speaker}] {text}", flush=True)


async def run(args: argparse.Namespace) -> int:
    config = await fetch_client_config(args.url)
    if not config.enabled:
        print("Gemini bridge is disabled on the server.")
        return 2

    loop = asyncio.get_running_loop()
    session = ClientSession(
        input_sample_rate=config.input_sample_rate,
        output_sample_rate=config.output_sample_rate,
    )
    context = AudioOutputContext(session.output_sample_rate, notify=loop.call_soon_threadsafe)
    device = LocalPlaybackDevice(context)

    # No media-transport publisher in the CLI; transport routing falls back to local.
    scheduler = PlaybackScheduler(
        context,
        local_playback=config.local_playback,
        audio_via_transport=config.audio_via_transport,
    )
    capture = None if args.no_mic else AudioCapturePipeline(session)

    pending: list[asyncio.Task[bool]] = []

    def on_ready() -> None:
        if args.text:
            pending.append(asyncio.create_task(client.send_text(args.text)))

    client = BridgeClient(
        session,
        scheduler=scheduler,
        capture=capture,
        on_transcript=_print_transcript,
        on_ready=on_ready,
    )

    log_event({"event_type": "CLIENT_STARTING", "model": config.model, "url": args.url})
    device.start()
    try:
        await client.connect(to_ws_url(args.url))
        await client.run()
    finally:
        await client.close()
        device.stop()
        for task in pending:
            task.cancel()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="gemini-bridge-client")
    ap.add_argument("--url", default=DEFAULT_BASE_URL, help="Bridge server base URL")
    ap.add_argument("--text", default=None, help="Send one text turn once the session is ready")
    ap.add_argument("--no-mic", action="store_true", help="Do not capture the microphone")
    args = ap.parse_args(argv)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except httpx.HTTPError as e:
        print(f"Could not fetch bridge config: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
