from __future__ import annotations

import logging
from typing import Callable, Iterable, Literal

from auroraguard.capabilities import Capability
from auroraguard.keywords import match_keyword
from auroraguard.models import Notice, TranscriptEvent
from auroraguard.scheduler import Scheduler, TimerHandle
from auroraguard.speech import SpeechBackend, SpeechSession

ErrorClass = Literal["fatal", "benign", "ignore", "error"]

_FATAL_CODES = ("not-allowed", "permission-denied", "service-not-allowed", "auth_error")
_BENIGN_CODES = ("no-speech",)
_IGNORED_CODES = ("aborted",)

MIC_DENIED_MESSAGE = "Microphone access denied. Please allow microphone access."


def classify_error(code: str) -> ErrorClass:
    c = (code or "").strip().lower()
    if c in _FATAL_CODES:
        return "fatal"
    if c in _BENIGN_CODES:
        return "benign"
    if c in _IGNORED_CODES:
        return "ignore"
    return "error"


class RecognitionSessionManager:
    """
    Owns the one continuous speech session and keeps it alive.

    The live session handle never leaves this object; callers only see
    start()/stop() and the callbacks. Session callbacks arrive one at a time
    on the event loop, so no locking is needed.
    """

    def __init__(
        self,
        backend: SpeechBackend,
        capability: Capability,
        scheduler: Scheduler,
        *,
        keywords: Callable[[], Iterable[str]],
        on_transcript: Callable[[str], None] | None = None,
        on_keyword: Callable[[str, str], None] | None = None,
        on_error: Callable[[Notice], None] | None = None,
        on_listening: Callable[[bool], None] | None = None,
        on_stopped: Callable[[], None] | None = None,
        language: str = "en",
        continuous: bool = True,
        restart_delay_s: float = 0.1,
        error_restart_delay_s: float = 1.0,
    ) -> None:
        self._backend = backend
        self._capability = capability
        self._scheduler = scheduler
        self._keywords = keywords
        self._on_transcript = on_transcript
        self._on_keyword = on_keyword
        self._on_error = on_error
        self._on_listening = on_listening
        # Fired when the session ends for good without stop(); assignable after construction.
        self.on_stopped = on_stopped
        self._language = language
        self._continuous = bool(continuous)
        self._restart_delay_s = max(0.0, float(restart_delay_s))
        self._error_restart_delay_s = max(self._restart_delay_s, float(error_restart_delay_s))
        self._logger = logging.getLogger("auroraguard.recognition")

        self._session: SpeechSession | None = None
        self._should_restart = False
        self._listening = False
        self._transcript = ""
        self._error: str | None = None
        self._finals: dict[int, str] = {}
        self._interim = ""
        self._restart_handle: TimerHandle | None = None
        self._unsupported_reported = False
        self._error_reported = False
        self._ended_with_error = False
        self.sessions_created = 0

    @property
    def supported(self) -> bool:
        return self._capability.supported

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def active(self) -> bool:
        return self._session is not None

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def should_restart(self) -> bool:
        return self._should_restart

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None and not self._restart_handle.cancelled

    def start(self) -> None:
        if not self._capability.supported:
            self._error = self._capability.reason or "Speech recognition is not supported"
            if not self._unsupported_reported:
                self._unsupported_reported = True
                self._surface(Notice("capability-unsupported", "Speech Recognition Unavailable", self._error, True))
            return
        if self._session is not None:
            self._logger.debug("Recognition already active; ignoring start()")
            return
        self._error = None
        self._error_reported = False
        self._ended_with_error = False
        self._should_restart = True
        self._open_session()

    def stop(self) -> None:
        self._should_restart = False
        self._cancel_restart()
        session, self._session = self._session, None
        if session is not None:
            try:
                session.stop()
            except Exception:
                self._logger.exception("Failed to stop speech session")
        was_listening = self._listening
        self._listening = False
        self._error_reported = False
        self._ended_with_error = False
        self._clear_segments()
        self._transcript = ""
        if self._on_transcript is not None:
            self._on_transcript("")
        if was_listening:
            self._notify_listening(False)

    def reset_transcript(self) -> None:
        """Forget the segments heard so far, so the same words are not matched twice."""
        self._clear_segments()
        self._transcript = ""
        if self._on_transcript is not None:
            self._on_transcript("")

    def _open_session(self) -> bool:
        session = self._backend.create_session(self._language, self._continuous)
        session.on_start = lambda: self._handle_start(session)
        session.on_result = lambda event: self._handle_result(session, event)
        session.on_error = lambda code, message: self._handle_error(session, code, message)
        session.on_end = lambda: self._handle_end(session)
        self._session = session
        self.sessions_created += 1
        self._clear_segments()
        try:
            session.start()
        except Exception:
            self._logger.exception("Failed to start speech recognition")
            self._session = None
            self._should_restart = False
            self._error = "Failed to start speech recognition"
            self._surface(Notice("recognition-error", "Speech Recognition Error", self._error, True))
            return False
        return True

    def _handle_start(self, session: SpeechSession) -> None:
        if session is not self._session:
            return
        self._logger.info("Speech recognition started")
        self._error_reported = False
        self._ended_with_error = False
        self._listening = True
        self._notify_listening(True)

    def _handle_result(self, session: SpeechSession, event: TranscriptEvent) -> None:
        if session is not self._session:
            return
        if event.is_final:
            self._finals[event.result_index] = event.text
            self._interim = ""
        else:
            self._interim = event.text
        text = self._best_text()
        self._transcript = text
        self._logger.debug("Transcript: %s", text)
        if self._on_transcript is not None:
            self._on_transcript(text)

        keyword = match_keyword(text, self._keywords())
        if keyword is not None:
            self._logger.info("Keyword detected: %s", keyword)
            if self._on_keyword is not None:
                self._on_keyword(keyword, text)

    def _handle_error(self, session: SpeechSession, code: str, message: str) -> None:
        if session is not self._session:
            return
        kind = classify_error(code)
        if kind == "fatal":
            self._logger.warning("Speech recognition permission denied (%s)", code)
            self._should_restart = False
            self._cancel_restart()
            self._error = MIC_DENIED_MESSAGE
            self._surface(Notice("permission-denied", "Microphone Access Denied", self._error, True))
        elif kind == "benign":
            self._logger.info("No speech detected, continuing...")
        elif kind == "ignore":
            self._logger.debug("Speech recognition aborted")
        else:
            self._logger.warning("Speech recognition error: %s %s", code, message)
            self._error = f"Speech recognition error: {code}"
            self._ended_with_error = True
            # One notice per outage; cleared by the next successful start.
            if not self._error_reported:
                self._error_reported = True
                self._surface(Notice("recognition-error", "Speech Recognition Error", self._error, True))

    def _handle_end(self, session: SpeechSession) -> None:
        if session is not self._session:
            return
        self._logger.info("Speech recognition ended")
        # Listening is cleared before any restart decision.
        was_listening = self._listening
        self._listening = False
        if was_listening:
            self._notify_listening(False)

        if self._should_restart and self._continuous:
            delay = self._error_restart_delay_s if self._ended_with_error else self._restart_delay_s
            self._logger.info("Restarting speech recognition in %.2fs", delay)
            self._cancel_restart()
            self._restart_handle = self._scheduler.call_later(delay, self._restart)
            return
        self._session = None
        self._should_restart = False
        self._notify_stopped()

    def _restart(self) -> None:
        self._restart_handle = None
        session = self._session
        if not self._should_restart or session is None:
            return
        self._clear_segments()
        try:
            session.start()
        except Exception:
            self._logger.info("Could not restart, creating new session")
            if not self._open_session():
                self._notify_stopped()

    def _notify_stopped(self) -> None:
        self._logger.warning("Speech recognition stopped for good")
        if self.on_stopped is not None:
            self.on_stopped()

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _best_text(self) -> str:
        if self._finals:
            return " ".join(self._finals[i].strip() for i in sorted(self._finals) if self._finals[i].strip())
        return self._interim

    def _clear_segments(self) -> None:
        self._finals.clear()
        self._interim = ""

    def _notify_listening(self, listening: bool) -> None:
        if self._on_listening is not None:
            self._on_listening(listening)

    def _surface(self, notice: Notice) -> None:
        if self._on_error is not None:
            self._on_error(notice)
