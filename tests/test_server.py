import asyncio
import json

import numpy as np
import pytest

from auroraguard.config import GuardConfig
from auroraguard.providers import HttpNotificationProvider, UnconfiguredProvider
from auroraguard.server import GuardServer, build_provider


class FakeConn:
    def __init__(self, path, messages=()):
        self.request = type("Request", (), {"path": path})()
        self.remote_address = ("127.0.0.1", 50000)
        self.sent = []
        self.closed = None
        self._messages = list(messages)

    async def send(self, payload):
        self.sent.append(json.loads(payload))

    async def close(self, code=1000, reason=""):
        self.closed = (code, reason)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for m in self._messages:
            yield m


def _server(tmp_path, **overrides):
    cfg = GuardConfig(contacts_path=str(tmp_path / "contacts.json"), log_level="WARNING", **overrides)
    return GuardServer(cfg)


def _drain(server):
    out = []
    while not server._outbox.empty():
        out.append(server._outbox.get_nowait())
    return out


def test_build_provider():
    assert isinstance(build_provider(GuardConfig()), UnconfiguredProvider)
    assert isinstance(
        build_provider(GuardConfig(notify_provider="http", notify_url="https://example.test")),
        HttpNotificationProvider,
    )
    with pytest.raises(SystemExit):
        build_provider(GuardConfig(notify_provider="http"))
    with pytest.raises(SystemExit):
        build_provider(GuardConfig(notify_provider="twilio", twilio_account_sid="AC1"))


def test_keyword_and_contact_messages(tmp_path):
    async def scenario():
        server = _server(tmp_path)
        handle = server._handle_event_message

        handle({"type": "keywords.update", "keywords": ["Fire", "help"]}, None)
        handle({"type": "keywords.add", "keyword": "police"}, None)
        handle({"type": "keywords.remove", "keyword": "help"}, None)
        assert server._keywords.keywords == ("fire", "police")

        handle({"type": "contacts.add", "name": "Ada", "phone": "+1"}, None)
        handle({"type": "contacts.add", "name": "Ben", "phone": "+2"}, None)
        ids = [c.id for c in server._contacts.list()]
        handle({"type": "contacts.reorder", "ids": list(reversed(ids))}, None)
        assert [c.name for c in server._contacts.list()] == ["Ben", "Ada"]

        with pytest.raises(ValueError):
            handle({"type": "contacts.reorder", "ids": "nope"}, None)
        with pytest.raises(ValueError):
            handle({"type": "contacts.delete", "id": "ghost"}, None)

        status = handle({"type": "status.request"}, None)
        assert status["type"] == "status"
        assert status["keywords"] == ["fire", "police"]
        assert [c["name"] for c in status["contacts"]] == ["Ben", "Ada"]
        assert status["protection"]["phase"] == "idle"

        kinds = [m.get("kind") for m in _drain(server) if m["type"] == "notice"]
        assert kinds.count("keywords-updated") == 3
        assert kinds.count("contact-added") == 2
        assert "contacts-reordered" in kinds

    asyncio.run(scenario())


def test_protection_start_without_speech_reports_unsupported(tmp_path):
    async def scenario():
        server = _server(tmp_path)
        server._handle_event_message({"type": "protection.start"}, None)
        assert server._alerts.phase == "idle"
        notices = [m for m in _drain(server) if m["type"] == "notice"]
        assert notices[0]["kind"] == "capability-unsupported"

    asyncio.run(scenario())


def test_location_messages_update_provider(tmp_path):
    async def scenario():
        server = _server(tmp_path)
        server._location.start_watch()
        server._handle_event_message({"type": "location", "lat": 10.0, "lng": 20.0}, None)
        server._handle_event_message({"type": "location", "lat": "bad"}, None)
        assert (server._location.location.lat, server._location.location.lng) == (10.0, 20.0)
        return server._build_status_payload()

    status = asyncio.run(scenario())
    assert status["location"]["location"]["lat"] == 10.0


def test_events_route_replies_with_status_and_errors(tmp_path):
    async def scenario():
        server = _server(tmp_path)
        conn = FakeConn(
            "/events",
            [
                json.dumps({"type": "hello", "v": 1, "client": "test"}),
                "not json",
                json.dumps({"type": "contacts.add", "name": "", "phone": ""}),
            ],
        )
        await server._route(conn)
        return conn, server

    conn, server = asyncio.run(scenario())
    assert conn.sent[0]["type"] == "status"
    errors = [m for m in conn.sent if m["type"] == "error"]
    assert errors == [{"type": "error", "message": "Contact name and phone are required", "request": "contacts.add"}]
    assert not server._events


def test_unknown_path_is_closed(tmp_path):
    async def scenario():
        conn = FakeConn("/nope")
        await _server(tmp_path)._route(conn)
        return conn

    assert asyncio.run(scenario()).closed[0] == 1008


def test_stt_route_downmixes_stereo_frames(tmp_path):
    stereo = np.array([100, 300] * 320, dtype=np.int16).tobytes()

    async def scenario():
        server = _server(tmp_path)
        hello = {
            "type": "audio.hello",
            "deviceId": "pixel",
            "audio": {"format": "pcm_s16le", "sampleRateHz": 16000, "channels": 2, "frameMs": 20},
        }
        conn = FakeConn("/stt", [json.dumps(hello), stereo])
        await server._route(conn)
        return server

    server = asyncio.run(scenario())
    assert server._hub.source == "phone"
    assert server._hub.frames_received == 1
    frame = server._hub._q.get_nowait()
    assert np.frombuffer(frame, dtype=np.int16).tolist() == [200] * 320


def test_stt_route_detects_stereo_without_hello(tmp_path):
    stereo = np.array([0, 1000] * 320, dtype=np.int16).tobytes()

    async def scenario():
        server = _server(tmp_path)
        await server._route(FakeConn("/stt", [stereo]))
        return server

    server = asyncio.run(scenario())
    frame = server._hub._q.get_nowait()
    assert len(frame) == 640


def test_alert_dispatch_is_tracked_with_background_tasks(tmp_path):
    async def scenario():
        server = _server(tmp_path)
        server._handle_event_message({"type": "contacts.add", "name": "Ada", "phone": "+1"}, None)
        server._alerts._phase = "listening"
        server._alerts.handle_keyword("help", "help")
        task = server._alerts.dispatch_task
        assert task in server._background
        await task
        await asyncio.sleep(0)
        assert task not in server._background
        return [m.get("kind") for m in _drain(server) if m["type"] == "notice"]

    kinds = asyncio.run(scenario())
    assert kinds[-1] == "dispatch-failure"
