from __future__ import annotations

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any
from xml.sax.saxutils import escape

import certifi
import requests

from auroraguard.alert_log import AlertAttempt, AlertLog

_PHONE_STRIP_RE = re.compile(r"[\s()\-]")


class ProviderError(Exception):
    """The provider could not process the batch at all."""


def normalize_phone(phone: str) -> str:
    """Drop spaces, parentheses and dashes; keep a leading + and digits."""
    return _PHONE_STRIP_RE.sub("", str(phone or ""))


def maps_link(location: dict[str, Any] | None) -> str:
    if not location:
        return ""
    return f"https://www.google.com/maps?q={location['lat']},{location['lng']}"


def compose_sms(contact_name: str, keyword: str, location: dict[str, Any] | None) -> str:
    text = (
        "EMERGENCY ALERT!\n\n"
        f'Aurora detected the keyword "{keyword}".\n\n'
        f"{contact_name}, please check on this person immediately!"
    )
    link = maps_link(location)
    if link:
        text += f"\n\nLocation: {link}"
    return text


def compose_twiml(keyword: str) -> str:
    kw = escape(keyword)
    return (
        "<Response>"
        f'<Say voice="alice">Emergency alert! The keyword {kw} was detected. '
        "Please check on this person immediately.</Say>"
        '<Pause length="1"/>'
        '<Say voice="alice">I repeat, this is an emergency alert. Please respond immediately.</Say>'
        "</Response>"
    )


def _ca_bundle() -> str:
    return (os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE") or "").strip() or certifi.where()


class NotificationProvider(ABC):
    """
    External side of a dispatch: takes one batched request and returns
    {"success": bool, "results": [{"contactId", "smsStatus", "callStatus"?}], ...}.
    Raising means the whole batch failed.
    """

    @abstractmethod
    async def send(self, request: dict[str, Any]) -> dict[str, Any]: ...


class UnconfiguredProvider(NotificationProvider):
    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        raise ProviderError("Notification provider not configured (set NOTIFY_PROVIDER)")


class HttpNotificationProvider(NotificationProvider):
    """POST the batch to a hosted alert function that fans out server-side."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout_s = float(timeout_s)
        self._session = session or requests.Session()
        self._logger = logging.getLogger("auroraguard.providers.http")

    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._post, request)

    def _post(self, request: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
            headers["apikey"] = self._api_key
        self._logger.info("Posting alert batch contacts=%d to %s", len(request.get("contacts") or []), self._url)
        try:
            resp = self._session.post(
                self._url,
                json=request,
                headers=headers,
                timeout=self._timeout_s,
                verify=_ca_bundle(),
            )
        except requests.RequestException as e:
            raise ProviderError(f"Alert service unreachable: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            detail = body.get("error") if isinstance(body, dict) else None
            raise ProviderError(detail or f"Alert service returned HTTP {resp.status_code}")
        if not isinstance(body, dict):
            raise ProviderError("Alert service returned a non-JSON response")
        return body


class TwilioNotificationProvider(NotificationProvider):
    """Client-side fan-out: one SMS per contact and a voice call to the primary contact."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        alert_log: AlertLog | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            from twilio.rest import Client

            client = Client(account_sid, auth_token)
        self._client = client
        self._from = from_number
        self._log = alert_log
        self._logger = logging.getLogger("auroraguard.providers.twilio")

    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._send_all, request)

    def _send_all(self, request: dict[str, Any]) -> dict[str, Any]:
        contacts = request.get("contacts") or []
        keyword = str(request.get("keyword") or "")
        location = request.get("location")
        self._logger.info(
            "Received emergency alert request contacts=%d keyword=%s hasLocation=%s",
            len(contacts),
            keyword,
            bool(location),
        )
        results = [self._send_one(c, keyword, location) for c in contacts]
        return {"success": True, "results": results, "message": f"Alerts sent to {len(contacts)} contacts"}

    def _send_one(self, contact: dict[str, Any], keyword: str, location: dict[str, Any] | None) -> dict[str, Any]:
        phone = normalize_phone(contact.get("phone", ""))
        result: dict[str, Any] = {
            "contactId": contact.get("id"),
            "contactName": contact.get("name"),
            "smsStatus": "failed",
        }
        errors: list[str] = []

        self._logger.info("Sending SMS to %s at %s", contact.get("name"), phone)
        try:
            msg = self._client.messages.create(
                to=phone,
                from_=self._from,
                body=compose_sms(str(contact.get("name") or ""), keyword, location),
            )
            if getattr(msg, "sid", None):
                result["smsStatus"] = "sent"
            else:
                errors.append("SMS failed")
        except Exception as e:
            self._logger.warning("SMS to %s failed: %s", contact.get("name"), e)
            errors.append(str(e) or "SMS failed")
        self._record(contact, "sms", keyword, location, result["smsStatus"], errors[-1] if errors else None)

        if contact.get("isPrimary"):
            self._logger.info("Making call to primary contact %s at %s", contact.get("name"), phone)
            call_error: str | None = None
            try:
                call = self._client.calls.create(to=phone, from_=self._from, twiml=compose_twiml(keyword))
                result["callStatus"] = "initiated" if getattr(call, "sid", None) else "failed"
                if result["callStatus"] == "failed":
                    call_error = "Call failed"
            except Exception as e:
                self._logger.warning("Call to %s failed: %s", contact.get("name"), e)
                result["callStatus"] = "failed"
                call_error = str(e) or "Call failed"
            if call_error:
                errors.append(call_error)
            status = "sent" if result["callStatus"] == "initiated" else "failed"
            self._record(contact, "call", keyword, location, status, call_error)

        if errors:
            result["error"] = " ".join(errors)
        return result

    def _record(
        self,
        contact: dict[str, Any],
        alert_type: str,
        keyword: str,
        location: dict[str, Any] | None,
        status: str,
        error: str | None,
    ) -> None:
        if self._log is None:
            return
        try:
            self._log.append(
                AlertAttempt(
                    contact_id=str(contact.get("id")),
                    contact_name=str(contact.get("name") or ""),
                    contact_phone=str(contact.get("phone") or ""),
                    alert_type=alert_type,
                    keyword_detected=keyword,
                    status=status,
                    location_lat=(location or {}).get("lat"),
                    location_lng=(location or {}).get("lng"),
                    error_message=error,
                )
            )
        except OSError:
            self._logger.exception("Failed to write alert log %s", self._log.path)
