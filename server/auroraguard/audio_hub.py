from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from auroraguard.audio_features import pcm16le_bytes_to_float32, rms as rms_value


class AudioHub:
    """Bounded queue of mono PCM16 frames shared by the audio inputs and the STT session."""

    def __init__(self, max_frames: int = 200, sample_rate_hz: int = 16000) -> None:
        self._q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max(1, int(max_frames)))
        self._logger = logging.getLogger("auroraguard.audio")
        self.sample_rate_hz = int(sample_rate_hz)
        self.last_rms: float = 0.0
        self.frames_received: int = 0
        self.dropped_frames: int = 0
        self.source: str | None = None

    def push(self, frame: bytes, source: str = "phone") -> None:
        if not frame:
            return
        self.source = source
        self.frames_received += 1
        try:
            self.last_rms = rms_value(pcm16le_bytes_to_float32(frame))
        except ValueError:
            # Odd-length frame; drop it rather than desync the stream.
            self.dropped_frames += 1
            return
        if self._q.full():
            try:
                _ = self._q.get_nowait()
                self.dropped_frames += 1
            except asyncio.QueueEmpty:
                pass
        try:
            self._q.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped_frames += 1

    def drain(self) -> int:
        """Discard buffered frames (stale audio from before a session started)."""
        n = 0
        while True:
            try:
                self._q.get_nowait()
            except asyncio.QueueEmpty:
                return n
            n += 1

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            yield await self._q.get()

    def status(self) -> dict[str, object]:
        return {
            "source": self.source,
            "sampleRateHz": self.sample_rate_hz,
            "lastRms": self.last_rms,
            "framesReceived": self.frames_received,
            "droppedFrames": self.dropped_frames,
            "queued": self._q.qsize(),
        }
