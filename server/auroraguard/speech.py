from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from auroraguard.models import TranscriptEvent


class SessionStateError(RuntimeError):
    """The session handle cannot be started in its current state."""


class SpeechSession(ABC):
    """
    One continuous speech-to-text session.

    Lifecycle events are delivered through the on_* callbacks, one at a time:
    on_start once capture begins, on_result for every interim or final
    transcript fragment, on_error with a short error code, and on_end exactly
    once when the session is over (after stop(), abort(), an error, or the
    service closing it).
    """

    def __init__(self, language: str = "en", continuous: bool = True) -> None:
        self.language = language
        self.continuous = continuous
        self.on_start: Callable[[], None] | None = None
        self.on_result: Callable[[TranscriptEvent], None] | None = None
        self.on_error: Callable[[str, str], None] | None = None
        self.on_end: Callable[[], None] | None = None

    @abstractmethod
    def start(self) -> None:
        """Begin capture. Raises SessionStateError if this handle cannot start."""

    @abstractmethod
    def stop(self) -> None:
        """Finish gracefully; pending audio may still produce results."""

    def abort(self) -> None:
        self.stop()

    def _emit_start(self) -> None:
        if self.on_start is not None:
            self.on_start()

    def _emit_result(self, event: TranscriptEvent) -> None:
        if self.on_result is not None:
            self.on_result(event)

    def _emit_error(self, code: str, message: str = "") -> None:
        if self.on_error is not None:
            self.on_error(code, message)

    def _emit_end(self) -> None:
        if self.on_end is not None:
            self.on_end()


class SpeechBackend(ABC):
    @abstractmethod
    def create_session(self, language: str, continuous: bool) -> SpeechSession: ...
