from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from auroraguard.models import Contact, ContactOutcome, DispatchResult, Location
from auroraguard.providers import NotificationProvider


class DispatchError(Exception):
    """The whole batch failed; no per-contact results are available."""


class NoContactsError(DispatchError):
    pass


def build_alert_request(
    contacts: Sequence[Contact],
    keyword: str,
    location: Location | None,
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "contacts": [
            {"id": c.id, "name": c.name, "phone": c.phone, "isPrimary": index == 0}
            for index, c in enumerate(contacts)
        ],
        "keyword": keyword,
    }
    if location is not None:
        request["location"] = location.as_payload()
    return request


def parse_alert_response(payload: Any) -> DispatchResult:
    if not isinstance(payload, dict):
        raise DispatchError("Malformed alert response")
    if payload.get("success") is False:
        raise DispatchError(str(payload.get("error") or "Failed to send emergency alerts"))
    results = payload.get("results")
    if not isinstance(results, list):
        raise DispatchError("Alert response has no results")

    outcomes: list[ContactOutcome] = []
    for item in results:
        if not isinstance(item, dict) or item.get("contactId") is None:
            continue
        sms = "sent" if item.get("smsStatus") == "sent" else "failed"
        call_status = item.get("callStatus")
        if call_status is None:
            call = "not-applicable"
        else:
            call = "initiated" if call_status == "initiated" else "failed"
        outcomes.append(ContactOutcome(contact_id=str(item["contactId"]), sms_outcome=sms, call_outcome=call))
    return DispatchResult(outcomes=tuple(outcomes), message=str(payload.get("message") or ""))


class AlertDispatcher:
    """Sends exactly one batched request per alert cycle."""

    def __init__(self, provider: NotificationProvider) -> None:
        self._provider = provider
        self._logger = logging.getLogger("auroraguard.dispatcher")
        self.calls = 0

    async def dispatch(
        self,
        contacts: Sequence[Contact],
        keyword: str,
        location: Location | None = None,
    ) -> DispatchResult:
        if not contacts:
            raise NoContactsError("No contacts configured")
        request = build_alert_request(contacts, keyword, location)
        self.calls += 1
        self._logger.info(
            "Dispatching alert keyword=%s contacts=%d hasLocation=%s",
            keyword,
            len(contacts),
            location is not None,
        )
        try:
            payload = await self._provider.send(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning("Alert dispatch failed: %s", e)
            raise DispatchError(str(e) or "Failed to send emergency alerts") from e
        result = parse_alert_response(payload)
        self._logger.info("Alert dispatch complete results=%d", len(result.outcomes))
        return result
