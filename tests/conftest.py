from __future__ import annotations

import asyncio
from typing import Any

import pytest

from auroraguard.capabilities import Capability
from auroraguard.models import TranscriptEvent
from auroraguard.providers import NotificationProvider
from auroraguard.scheduler import VirtualScheduler
from auroraguard.speech import SessionStateError, SpeechBackend, SpeechSession


class FakeSession(SpeechSession):
    def __init__(self, language: str = "en", continuous: bool = True, *, single_use: bool = False) -> None:
        super().__init__(language=language, continuous=continuous)
        self.single_use = single_use
        self.starts = 0
        self.stops = 0
        self.fail_start = False

    def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("mic busy")
        if self.single_use and self.starts:
            raise SessionStateError("already started")
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1

    # Drive the callbacks the way a real engine would.
    def began(self) -> None:
        self._emit_start()

    def hear(self, text: str, *, final: bool = True, index: int = 0) -> None:
        self._emit_result(TranscriptEvent(text=text, is_final=final, result_index=index))

    def fail(self, code: str, message: str = "") -> None:
        self._emit_error(code, message)

    def ended(self) -> None:
        self._emit_end()


class FakeBackend(SpeechBackend):
    def __init__(self, *, single_use: bool = False) -> None:
        self.single_use = single_use
        self.sessions: list[FakeSession] = []
        self.fail_next_start = False

    def create_session(self, language: str, continuous: bool) -> SpeechSession:
        session = FakeSession(language, continuous, single_use=self.single_use)
        if self.fail_next_start:
            session.fail_start = True
            self.fail_next_start = False
        self.sessions.append(session)
        return session

    @property
    def current(self) -> FakeSession:
        return self.sessions[-1]


class FakeProvider(NotificationProvider):
    """Answers every batch with sent SMS and an initiated call for the primary, unless told otherwise."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.response: dict[str, Any] | None = None

    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        results = []
        for c in request["contacts"]:
            item = {"contactId": c["id"], "smsStatus": "sent"}
            if c["isPrimary"]:
                item["callStatus"] = "initiated"
            results.append(item)
        return {"success": True, "results": results, "message": "ok"}


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def speech_ok() -> Capability:
    return Capability("speech", True)
