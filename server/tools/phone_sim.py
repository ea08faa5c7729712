from __future__ import annotations

import argparse
import asyncio
import json
import time
import wave

import websockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulate a phone streaming mic audio and GPS to Aurora Guard")
    parser.add_argument("--server", default="ws://127.0.0.1:8765", help="ws://host:port (without path)")
    parser.add_argument("--device-id", default="sim-phone")
    parser.add_argument("--wav", required=True, help="Path to mono WAV file (16kHz, 16-bit PCM)")
    parser.add_argument("--lat", type=float, help="Latitude to answer location.request with")
    parser.add_argument("--lng", type=float, help="Longitude to answer location.request with")
    parser.add_argument("--frame-ms", type=int, default=20)
    parser.add_argument("--sample-rate", type=int, default=16000)
    parser.add_argument("--tail-s", type=float, default=3.0, help="Silence to send after the WAV ends")
    return parser


def _read_pcm16_frames(wav_path: str, sample_rate: int, frame_ms: int):
    with wave.open(wav_path, "rb") as wf:
        if wf.getnchannels() != 1:
            raise SystemExit("WAV must be mono")
        if wf.getsampwidth() != 2:
            raise SystemExit("WAV must be 16-bit PCM")
        if wf.getframerate() != sample_rate:
            raise SystemExit(f"WAV sample rate must be {sample_rate}Hz (got {wf.getframerate()}Hz)")
        frames_per_chunk = int(sample_rate * (frame_ms / 1000.0))
        while True:
            chunk = wf.readframes(frames_per_chunk)
            if not chunk:
                break
            yield chunk


def _location_message(lat: float, lng: float) -> str:
    return json.dumps({"type": "location", "lat": lat, "lng": lng, "accuracy": 10.0, "timestamp": int(time.time() * 1000)})


async def _events(url: str, lat: float | None, lng: float | None, ready: asyncio.Event) -> None:
    async with websockets.connect(url) as ws:
        await ws.send(json.dumps({"v": 1, "type": "hello", "client": "phone_sim"}))
        await ws.send(json.dumps({"type": "protection.start"}))
        if lat is not None and lng is not None:
            await ws.send(_location_message(lat, lng))
        ready.set()
        async for msg in ws:
            if not isinstance(msg, str):
                continue
            obj = json.loads(msg)
            if obj.get("type") == "location.request":
                if lat is not None and lng is not None:
                    await ws.send(_location_message(lat, lng))
                else:
                    await ws.send(json.dumps({"type": "location.error", "code": "unavailable"}))
            elif obj.get("type") != "status":
                print(msg)


async def _stream(url: str, args: argparse.Namespace) -> None:
    async with websockets.connect(url, max_size=2 * 1024 * 1024) as ws:
        hello = {
            "v": 1,
            "type": "audio.hello",
            "deviceId": args.device_id,
            "audio": {"format": "pcm_s16le", "sampleRateHz": args.sample_rate, "channels": 1, "frameMs": args.frame_ms},
        }
        await ws.send(json.dumps(hello))

        frame_s = args.frame_ms / 1000.0
        silence = bytes(int(args.sample_rate * frame_s) * 2)
        frames = list(_read_pcm16_frames(args.wav, args.sample_rate, args.frame_ms))
        frames += [silence] * int(args.tail_s / frame_s)
        next_time = time.monotonic()
        for frame in frames:
            await ws.send(frame)
            next_time += frame_s
            sleep = next_time - time.monotonic()
            if sleep > 0:
                await asyncio.sleep(sleep)


async def main() -> None:
    args = build_parser().parse_args()
    base = args.server.rstrip("/")
    ready = asyncio.Event()
    events_task = asyncio.create_task(_events(f"{base}/events", args.lat, args.lng, ready))
    await ready.wait()
    try:
        await _stream(f"{base}/stt", args)
    finally:
        events_task.cancel()
        await asyncio.gather(events_task, return_exceptions=True)


if __name__ == "__main__":
    asyncio.run(main())
