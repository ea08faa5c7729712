from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import websockets
from websockets.asyncio.server import ServerConnection

from auroraguard.alert_log import AlertLog
from auroraguard.alerts import AlertStateMachine
from auroraguard.audio_features import downmix_to_mono
from auroraguard.audio_hub import AudioHub
from auroraguard.capabilities import negotiate_capabilities
from auroraguard.config import GuardConfig
from auroraguard.contacts import ContactStore
from auroraguard.dispatcher import AlertDispatcher
from auroraguard.elevenlabs_stt import ElevenLabsBackend, ElevenLabsConfig
from auroraguard.keywords import KeywordSet
from auroraguard.location import (
    LocationProvider,
    LocationSource,
    PhoneLocationSource,
    StaticLocationSource,
    parse_location,
)
from auroraguard.logging_utils import setup_logging
from auroraguard.mic import LocalMicrophone
from auroraguard.models import Notice
from auroraguard.protocol import dumps, error_message, loads, notice_message, parse_id_list, transcript_message
from auroraguard.providers import (
    HttpNotificationProvider,
    NotificationProvider,
    TwilioNotificationProvider,
    UnconfiguredProvider,
)
from auroraguard.recognition import RecognitionSessionManager
from auroraguard.scheduler import LoopScheduler


def build_provider(config: GuardConfig) -> NotificationProvider:
    logger = logging.getLogger("auroraguard.providers")
    if config.notify_provider == "http":
        if not config.notify_url:
            raise SystemExit("NOTIFY_PROVIDER=http requires NOTIFY_URL")
        return HttpNotificationProvider(
            config.notify_url,
            api_key=config.notify_api_key,
            timeout_s=config.notify_timeout_s,
        )
    if config.notify_provider == "twilio":
        if not (config.twilio_account_sid and config.twilio_auth_token and config.twilio_phone_number):
            raise SystemExit(
                "NOTIFY_PROVIDER=twilio requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER"
            )
        return TwilioNotificationProvider(
            config.twilio_account_sid,
            config.twilio_auth_token,
            config.twilio_phone_number,
            alert_log=AlertLog(config.alert_log_path),
        )
    logger.warning("No notification provider configured (set NOTIFY_PROVIDER=http or twilio); alerts will fail")
    return UnconfiguredProvider()


@dataclass(slots=True)
class ClientInfo:
    v: int | None
    client: str | None
    model: str | None
    last_seen_monotonic: float


@dataclass(slots=True)
class PhoneMicState:
    device_id: str
    channels: int
    mono_bytes_per_frame: int
    frames: int = 0


class GuardServer:
    def __init__(self, config: GuardConfig) -> None:
        setup_logging(config.log_level, config.log_dir)
        self._logger = logging.getLogger("auroraguard")
        self._config = config

        self._events: set[ServerConnection] = set()
        self._stt_conns: set[ServerConnection] = set()
        self._client_info: dict[ServerConnection, ClientInfo] = {}
        self._phone_mic_by_conn: dict[ServerConnection, PhoneMicState] = {}
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._background: set[asyncio.Task[Any]] = set()
        self._stop = asyncio.Event()

        self._capabilities = negotiate_capabilities(config)
        self._scheduler = LoopScheduler()
        self._hub = AudioHub()
        self._keywords = KeywordSet(config.keywords)
        self._contacts = ContactStore(config.contacts_path)

        self._location_source = self._build_location_source()
        self._location = LocationProvider(
            self._location_source,
            self._capabilities.location,
            on_change=self._publish_status,
        )

        stt_cfg = ElevenLabsConfig(
            api_key=config.elevenlabs_api_key or "",
            host=config.elevenlabs_host,
            model_id=config.elevenlabs_model_id,
            language_code=config.language,
            commit_strategy=config.elevenlabs_commit_strategy,
            vad_silence_threshold_secs=config.elevenlabs_vad_silence_threshold_secs,
        )
        self._recognizer = RecognitionSessionManager(
            ElevenLabsBackend(stt_cfg, self._hub),
            self._capabilities.speech,
            self._scheduler,
            keywords=lambda: self._keywords.keywords,
            on_transcript=self._on_transcript,
            on_keyword=self._on_keyword,
            on_error=self._publish_notice,
            on_listening=lambda _listening: self._publish_status(),
            language=config.language,
            continuous=config.continuous,
            restart_delay_s=config.restart_delay_s,
        )
        self._alerts = AlertStateMachine(
            self._recognizer,
            AlertDispatcher(build_provider(config)),
            contacts=self._contacts.snapshot,
            location=self._location.snapshot,
            scheduler=self._scheduler,
            cooldown_s=config.alert_cooldown_s,
            on_change=self._publish_status,
            on_notice=self._publish_notice,
            spawn=lambda coro: self._spawn(coro, "alert_dispatch"),
        )

    def _build_location_source(self) -> LocationSource | None:
        cfg = self._config
        if not self._capabilities.location.supported:
            return None
        if cfg.location_source == "static" and cfg.location_lat is not None and cfg.location_lng is not None:
            return StaticLocationSource(cfg.location_lat, cfg.location_lng)
        return PhoneLocationSource(self._request_location_fix)

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        self._logger.info("Starting server on %s:%s", self._config.host, self._config.port)
        publish_task = asyncio.create_task(self._publish_loop(), name="publish_loop")
        status_task = asyncio.create_task(self._status_loop(), name="status_loop")
        tasks: list[asyncio.Task[None]] = [publish_task, status_task]
        if self._config.audio_source == "local":
            if self._capabilities.local_mic.supported:
                mic = LocalMicrophone(self._hub, device_name=self._config.mic_device)
                tasks.append(asyncio.create_task(mic.run(self._stop), name="local_mic"))
            else:
                self._logger.warning("Local microphone disabled: %s", self._capabilities.local_mic.reason)
        self._location.start_watch()
        try:
            async with websockets.serve(self._route, self._config.host, self._config.port, max_size=2 * 1024 * 1024):
                await self._stop.wait()
        finally:
            self._alerts.deactivate()
            self._location.stop_watch()
            pending = list(self._background)
            # In-flight alert dispatches run to completion; other helpers are cancelled.
            for t in pending:
                if t.get_name() != "alert_dispatch":
                    t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _route(self, conn: ServerConnection) -> None:
        raw_path = conn.request.path
        path = urlparse(raw_path).path

        if path == "/events":
            await self._handle_events(conn)
            return
        if path == "/stt":
            await self._handle_phone_stt(conn)
            return

        self._logger.warning("Unknown websocket path %s from %s", raw_path, conn.remote_address)
        await conn.close(code=1008, reason="Unknown path")

    async def _handle_events(self, conn: ServerConnection) -> None:
        self._events.add(conn)
        self._logger.info("/events connected from %s", conn.remote_address)
        self._client_info[conn] = ClientInfo(
            v=None,
            client=None,
            model=None,
            last_seen_monotonic=asyncio.get_running_loop().time(),
        )
        try:
            await conn.send(dumps(self._build_status_payload()))
            if isinstance(self._location_source, PhoneLocationSource) and self._location.location is None:
                self._spawn(self._location.refresh(), "location_refresh")
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if not isinstance(obj, dict):
                    continue
                info = self._client_info.get(conn)
                if info is not None:
                    info.last_seen_monotonic = asyncio.get_running_loop().time()
                try:
                    reply = self._handle_event_message(obj, info)
                except ValueError as e:
                    reply = error_message(str(e), str(obj.get("type")))
                if reply is not None:
                    await conn.send(dumps(reply))
        finally:
            self._events.discard(conn)
            self._client_info.pop(conn, None)
            self._logger.info("/events disconnected from %s", conn.remote_address)

    def _handle_event_message(self, obj: dict[str, Any], info: ClientInfo | None) -> dict[str, Any] | None:
        msg_type = obj.get("type")
        if msg_type == "hello":
            if info is not None:
                try:
                    if obj.get("v") is not None:
                        info.v = int(obj.get("v"))
                    if obj.get("client") is not None:
                        info.client = str(obj.get("client"))
                    if obj.get("model") is not None:
                        info.model = str(obj.get("model"))
                except (TypeError, ValueError):
                    return None
        elif msg_type == "protection.start":
            self._alerts.activate()
        elif msg_type == "protection.stop":
            self._alerts.deactivate()
        elif msg_type == "protection.toggle":
            self._alerts.toggle()
        elif msg_type == "keywords.update":
            kws = obj.get("keywords")
            if isinstance(kws, list):
                self._keywords.replace(kws)
                self._keywords_updated()
        elif msg_type == "keywords.add":
            if self._keywords.add(str(obj.get("keyword") or "")):
                self._keywords_updated()
        elif msg_type == "keywords.remove":
            if self._keywords.remove(str(obj.get("keyword") or "")):
                self._keywords_updated()
        elif msg_type == "contacts.add":
            contact = self._contacts.add(str(obj.get("name") or ""), str(obj.get("phone") or ""))
            self._publish_notice(
                Notice("contact-added", "Contact Added", f"{contact.name} will now receive emergency alerts.")
            )
            self._publish_status()
        elif msg_type == "contacts.delete":
            removed = self._contacts.delete(str(obj.get("id") or ""))
            if removed is None:
                raise ValueError("Unknown contact")
            self._publish_notice(
                Notice(
                    "contact-removed",
                    "Contact Removed",
                    f"{removed.name} has been removed from your emergency contacts.",
                )
            )
            self._publish_status()
        elif msg_type == "contacts.reorder":
            ids = parse_id_list(obj.get("ids"))
            if ids is None:
                raise ValueError("contacts.reorder requires a list of ids")
            self._contacts.reorder(ids)
            self._publish_notice(
                Notice("contacts-reordered", "Contacts Reordered", "Contact priority order has been updated.")
            )
            self._publish_status()
        elif msg_type == "location":
            if isinstance(self._location_source, PhoneLocationSource):
                try:
                    fix = parse_location(obj)
                except (KeyError, TypeError, ValueError):
                    return None
                self._location_source.push_fix(fix)
        elif msg_type == "location.error":
            if isinstance(self._location_source, PhoneLocationSource):
                self._location_source.push_error(str(obj.get("code") or "unavailable"), obj.get("message"))
        elif msg_type == "location.refresh":
            self._spawn(self._location.refresh(), "location_refresh")
        elif msg_type == "status.request":
            return self._build_status_payload()
        return None

    def _keywords_updated(self) -> None:
        self._logger.info("Keywords updated: %s", ", ".join(self._keywords.keywords))
        self._publish_notice(Notice("keywords-updated", "Keywords Updated", "Your emergency keywords have been saved."))
        self._publish_status()

    async def _handle_phone_stt(self, conn: ServerConnection) -> None:
        self._stt_conns.add(conn)
        self._logger.info("/stt connected from %s", conn.remote_address)
        try:
            await conn.send(dumps({"type": "status", "stt": "connected"}))
            async for msg in conn:
                if isinstance(msg, str):
                    try:
                        obj = loads(msg)
                    except Exception:
                        continue
                    if not isinstance(obj, dict) or obj.get("type") not in ("audio.hello", "hello"):
                        continue
                    audio = obj.get("audio") or {}
                    audio_format = str(audio.get("format") or "pcm_s16le")
                    sample_rate_hz = int(audio.get("sampleRateHz") or 16000)
                    channels = int(audio.get("channels") or 1)
                    frame_ms = int(audio.get("frameMs") or 20)
                    device_id = str(obj.get("deviceId") or "phone")
                    if audio_format != "pcm_s16le":
                        self._logger.warning("Phone mic deviceId=%s audio.format=%s (expected pcm_s16le)", device_id, audio_format)
                        continue
                    if sample_rate_hz != self._hub.sample_rate_hz:
                        self._logger.warning(
                            "Phone mic deviceId=%s sampleRateHz=%s (expected %d)",
                            device_id,
                            sample_rate_hz,
                            self._hub.sample_rate_hz,
                        )
                        continue
                    if channels not in (1, 2):
                        self._logger.warning("Phone mic deviceId=%s channels=%s (expected 1 or 2)", device_id, channels)
                        continue
                    self._phone_mic_by_conn[conn] = PhoneMicState(
                        device_id=device_id,
                        channels=channels,
                        mono_bytes_per_frame=int(sample_rate_hz * (frame_ms / 1000.0)) * 2,
                    )
                    self._logger.info(
                        "Phone mic ready deviceId=%s sampleRateHz=%s channels=%s frameMs=%s",
                        device_id,
                        sample_rate_hz,
                        channels,
                        frame_ms,
                    )
                    continue

                if not isinstance(msg, (bytes, bytearray)):
                    continue

                state = self._phone_mic_by_conn.get(conn)
                if state is None:
                    # Best-effort default: 16kHz mono PCM, 20ms frames.
                    state = PhoneMicState(device_id="phone", channels=1, mono_bytes_per_frame=640)
                    self._phone_mic_by_conn[conn] = state

                # Clients that skipped audio.hello: 640 bytes is mono, 1280 is stereo (16kHz/20ms).
                if state.channels == 1 and len(msg) == state.mono_bytes_per_frame * 2 and state.frames == 0:
                    state.channels = 2
                    self._logger.info("Phone mic %s detected stereo frames; switching channels=2", state.device_id)

                state.frames += 1
                self._hub.push(downmix_to_mono(bytes(msg), state.channels), source="phone")
        finally:
            self._stt_conns.discard(conn)
            self._phone_mic_by_conn.pop(conn, None)
            self._logger.info("/stt disconnected from %s", conn.remote_address)

    async def _request_location_fix(self) -> int:
        if not self._events:
            return 0
        await self._broadcast(self._events, dumps({"type": "location.request"}))
        return len(self._events)

    def _on_keyword(self, keyword: str, transcript: str) -> None:
        self._alerts.handle_keyword(keyword, transcript)

    def _on_transcript(self, text: str) -> None:
        self._outbox.put_nowait(transcript_message(text, self._recognizer.listening))

    def _publish_notice(self, notice: Notice) -> None:
        if notice.destructive:
            self._logger.warning("Notice %s: %s", notice.kind, notice.message)
        else:
            self._logger.info("Notice %s: %s", notice.kind, notice.message)
        self._outbox.put_nowait(notice_message(notice))

    def _publish_status(self) -> None:
        self._outbox.put_nowait(self._build_status_payload())

    async def _publish_loop(self) -> None:
        while True:
            obj = await self._outbox.get()
            if not self._events:
                continue
            await self._broadcast(self._events, dumps(obj))

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(1.0)
            self._publish_status()

    async def _broadcast(self, conns: set[ServerConnection], payload: str) -> None:
        dead: list[ServerConnection] = []
        for c in list(conns):
            try:
                await c.send(payload)
            except Exception:
                dead.append(c)
        for c in dead:
            conns.discard(c)

    def _build_status_payload(self) -> dict[str, Any]:
        now = asyncio.get_running_loop().time()
        clients = [
            {
                "v": info.v,
                "client": info.client,
                "model": info.model,
                "ageS": float(max(0.0, now - info.last_seen_monotonic)),
            }
            for info in list(self._client_info.values())
        ]
        return {
            "type": "status",
            "server": "ok",
            "protection": self._alerts.snapshot(),
            "keywords": list(self._keywords.keywords),
            "contacts": [c.as_dict() for c in self._contacts.list()],
            "location": self._location.as_dict(),
            "capabilities": self._capabilities.as_dict(),
            "audio": {**self._hub.status(), "phoneMics": len(self._phone_mic_by_conn)},
            "clients": {"events": len(self._events), "stt": len(self._stt_conns), "info": clients},
        }
