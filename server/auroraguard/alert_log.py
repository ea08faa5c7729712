"""Durable record of every notification attempt (one JSON object per line)."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class AlertAttempt:
    contact_id: str
    contact_name: str
    contact_phone: str
    alert_type: str              # sms / call
    keyword_detected: str
    status: str                  # sent / failed
    location_lat: float | None = None
    location_lng: float | None = None
    error_message: str | None = None
    created_at: str = field(default_factory=_utc_now)


class AlertLog:
    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def append(self, attempt: AlertAttempt) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        line = json.dumps(asdict(attempt), ensure_ascii=False)
        with self._lock:
            with open(self._path, "a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def read(self) -> list[dict[str, Any]]:
        if not os.path.exists(self._path):
            return []
        with open(self._path, "r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
