"""Local microphone capture via sounddevice."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from auroraguard.audio_features import float_block_to_pcm16
from auroraguard.audio_hub import AudioHub


def list_input_devices() -> list[dict[str, Any]]:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("sounddevice is required for local microphone capture.") from exc

    devices = sd.query_devices()
    return [dict(d) for d in devices if d.get("max_input_channels", 0) > 0]


def select_input_device(
    candidates: list[dict[str, Any]],
    prefer_name: str | None = None,
) -> dict[str, Any]:
    if not candidates:
        raise RuntimeError("No input devices found.")
    if prefer_name:
        preferred = [d for d in candidates if prefer_name.lower() in str(d.get("name", "")).lower()]
        if preferred:
            return preferred[0]
    return candidates[0]


class LocalMicrophone:
    """Feed 16 kHz mono PCM16 frames from a local input device into an AudioHub."""

    def __init__(
        self,
        hub: AudioHub,
        *,
        device_name: str | None = None,
        frame_ms: int = 20,
    ) -> None:
        self._hub = hub
        self._device_name = device_name
        self._frame_ms = int(frame_ms)
        self._logger = logging.getLogger("auroraguard.mic")

    async def run(self, stop: asyncio.Event) -> None:
        try:
            import sounddevice as sd
        except Exception as exc:  # pragma: no cover - environment-dependent
            raise RuntimeError("sounddevice is required for local microphone capture.") from exc

        loop = asyncio.get_running_loop()
        device = select_input_device(list_input_devices(), prefer_name=self._device_name)
        sample_rate_hz = self._hub.sample_rate_hz
        blocksize = int(sample_rate_hz * (self._frame_ms / 1000.0))

        def _callback(indata, _frames, _time, status) -> None:
            if status:
                return
            frame = float_block_to_pcm16(indata.copy())
            loop.call_soon_threadsafe(self._hub.push, frame, "local")

        self._logger.info("Local mic capturing from %s at %d Hz", device.get("name"), sample_rate_hz)
        with sd.InputStream(
            samplerate=sample_rate_hz,
            channels=1,
            dtype="float32",
            device=device.get("index"),
            blocksize=blocksize,
            callback=_callback,
        ):
            await stop.wait()
        self._logger.info("Local mic stopped")
