from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import ssl
from dataclasses import dataclass
from typing import Any

import certifi
import websockets

from auroraguard.audio_hub import AudioHub
from auroraguard.models import TranscriptEvent
from auroraguard.speech import SessionStateError, SpeechBackend, SpeechSession

_ERROR_TYPES = ("error", "quota_exceeded", "rate_limited", "input_error", "transcriber_error")


@dataclass(frozen=True, slots=True)
class ElevenLabsConfig:
    api_key: str
    host: str = "api.elevenlabs.io"
    model_id: str | None = None
    language_code: str | None = None
    audio_format: str = "pcm_16000"
    commit_strategy: str = "vad"
    vad_silence_threshold_secs: float = 1.2
    include_timestamps: bool = False


def build_ssl_context(logger: logging.Logger) -> ssl.SSLContext:
    if os.environ.get("ELEVENLABS_INSECURE_SSL") == "1":
        logger.warning("ELEVENLABS_INSECURE_SSL=1; TLS verification disabled (unsafe)")
        return ssl._create_unverified_context()
    cafile = (os.environ.get("SSL_CERT_FILE") or os.environ.get("REQUESTS_CA_BUNDLE") or "").strip()
    if cafile:
        logger.info("Using TLS CA bundle from env: %s", cafile)
        return ssl.create_default_context(cafile=cafile)
    return ssl.create_default_context(cafile=certifi.where())


def build_uri(cfg: ElevenLabsConfig, language_code: str | None = None) -> str:
    parts: list[str] = []
    if cfg.model_id:
        parts.append(f"model_id={cfg.model_id}")
    lang = language_code or cfg.language_code
    if lang:
        parts.append(f"language_code={lang}")
    if cfg.audio_format:
        parts.append(f"audio_format={cfg.audio_format}")
    if cfg.commit_strategy:
        parts.append(f"commit_strategy={cfg.commit_strategy}")
    if cfg.vad_silence_threshold_secs:
        parts.append(f"vad_silence_threshold_secs={cfg.vad_silence_threshold_secs}")
    if cfg.include_timestamps:
        parts.append("include_timestamps=true")
    query = ("?" + "&".join(parts)) if parts else ""
    return f"wss://{cfg.host}/v1/speech-to-text/realtime{query}"


class ElevenLabsSession(SpeechSession):
    """A single realtime STT connection. Handles are single-use: restart by creating a new one."""

    def __init__(
        self,
        cfg: ElevenLabsConfig,
        hub: AudioHub,
        *,
        language: str = "en",
        continuous: bool = True,
    ) -> None:
        super().__init__(language=language, continuous=continuous)
        self._cfg = cfg
        self._hub = hub
        self._logger = logging.getLogger("auroraguard.elevenlabs")
        self._task: asyncio.Task[None] | None = None
        self._result_index = 0

    def start(self) -> None:
        if self._task is not None:
            raise SessionStateError("ElevenLabs session already started")
        self._task = asyncio.get_running_loop().create_task(self._run(), name="elevenlabs_session")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        uri = build_uri(self._cfg, self.language)
        self._logger.info("Connecting ElevenLabs STT: %s", uri)
        try:
            async with websockets.connect(
                uri,
                additional_headers={"xi-api-key": self._cfg.api_key},
                ssl=build_ssl_context(self._logger),
                max_size=2 * 1024 * 1024,
                ping_interval=20,
                ping_timeout=20,
            ) as ws:
                self._hub.drain()

                async def sender() -> None:
                    async for frame in self._hub.frames():
                        payload = {
                            "message_type": "input_audio_chunk",
                            "audio_base_64": base64.b64encode(frame).decode("ascii"),
                            "commit": False,
                            "sample_rate": self._hub.sample_rate_hz,
                        }
                        await ws.send(json.dumps(payload, separators=(",", ":")))

                async def receiver() -> None:
                    async for msg in ws:
                        if not isinstance(msg, str):
                            continue
                        try:
                            obj = json.loads(msg)
                        except Exception:
                            continue
                        if self._handle_message(obj):
                            return

                send_task = asyncio.create_task(sender(), name="elevenlabs_sender")
                try:
                    await receiver()
                finally:
                    send_task.cancel()
                    await asyncio.gather(send_task, return_exceptions=True)
        except asyncio.CancelledError:
            self._logger.info("ElevenLabs STT session stopped")
            raise
        except Exception as e:
            self._logger.warning("ElevenLabs STT session error: %s (%s)", e, type(e).__name__)
            self._emit_error("network", str(e))
        finally:
            self._emit_end()

    def _handle_message(self, msg: dict[str, Any]) -> bool:
        """Map one service message onto session events. Returns True when the session should close."""
        msg_type = str(msg.get("message_type") or "")
        if msg_type == "session_started":
            self._emit_start()
        elif msg_type == "partial_transcript":
            text = str(msg.get("text") or "")
            if text.strip():
                self._emit_result(TranscriptEvent(text=text, is_final=False, result_index=self._result_index))
        elif msg_type in ("committed_transcript", "committed_transcript_with_timestamps"):
            text = str(msg.get("text") or "")
            if text.strip():
                self._emit_result(TranscriptEvent(text=text, is_final=True, result_index=self._result_index))
                self._result_index += 1
                if not self.continuous:
                    return True
        elif msg_type == "auth_error":
            self._emit_error("not-allowed", str(msg.get("error") or msg_type))
            return True
        elif msg_type in _ERROR_TYPES:
            self._emit_error(msg_type, str(msg.get("error") or msg_type))
        return False


class ElevenLabsBackend(SpeechBackend):
    def __init__(self, cfg: ElevenLabsConfig, hub: AudioHub) -> None:
        self._cfg = cfg
        self._hub = hub

    def create_session(self, language: str, continuous: bool) -> SpeechSession:
        return ElevenLabsSession(self._cfg, self._hub, language=language, continuous=continuous)
