from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

AlertPhase = Literal["idle", "listening", "alerting"]
SmsOutcome = Literal["sent", "failed"]
CallOutcome = Literal["initiated", "failed", "not-applicable"]


@dataclass(slots=True)
class Contact:
    id: str
    name: str
    phone: str
    priority: int
    created_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "priority": self.priority,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class Location:
    lat: float
    lng: float
    accuracy: float | None = None
    timestamp_ms: int | None = None

    def as_payload(self) -> dict[str, float]:
        # Only coordinates cross the notification provider boundary.
        return {"lat": self.lat, "lng": self.lng}

    def as_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp_ms,
        }


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    text: str
    is_final: bool
    result_index: int


@dataclass(slots=True)
class AlertStatus:
    calling: bool = False
    called: bool = False
    messaging: bool = False
    message_sent: bool = False

    @classmethod
    def idle(cls) -> AlertStatus:
        return cls()

    @classmethod
    def in_flight(cls, is_primary: bool) -> AlertStatus:
        return cls(calling=is_primary, messaging=True)

    def as_dict(self) -> dict[str, bool]:
        return {
            "calling": self.calling,
            "called": self.called,
            "messaging": self.messaging,
            "messageSent": self.message_sent,
        }


@dataclass(frozen=True, slots=True)
class ContactOutcome:
    contact_id: str
    sms_outcome: SmsOutcome
    call_outcome: CallOutcome = "not-applicable"


@dataclass(frozen=True, slots=True)
class DispatchResult:
    outcomes: tuple[ContactOutcome, ...]
    message: str = ""

    def outcome_for(self, contact_id: str) -> ContactOutcome | None:
        for outcome in self.outcomes:
            if outcome.contact_id == contact_id:
                return outcome
        return None


@dataclass(slots=True)
class AlertCycle:
    cycle_id: int
    keyword: str
    transcript: str
    contacts: tuple[Contact, ...]
    location: Location | None
    started_at: float
    statuses: dict[str, AlertStatus] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Notice:
    """A user-visible condition: an error kind or an informational event."""

    kind: str
    title: str
    message: str
    destructive: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "destructive": self.destructive,
        }
