import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from auroraguard.alert_log import AlertLog
from auroraguard.providers import (
    HttpNotificationProvider,
    ProviderError,
    TwilioNotificationProvider,
    compose_sms,
    compose_twiml,
    maps_link,
    normalize_phone,
)

REQUEST = {
    "contacts": [
        {"id": "a", "name": "Ada", "phone": "+1 (555) 000-0000", "isPrimary": True},
        {"id": "b", "name": "Ben", "phone": "555 000 0001", "isPrimary": False},
    ],
    "keyword": "help",
    "location": {"lat": 51.5, "lng": -0.12},
}


def test_normalize_phone():
    assert normalize_phone("+1 (555) 000-0000") == "+15550000000"
    assert normalize_phone("") == ""


def test_compose_sms_includes_maps_link_when_located():
    text = compose_sms("Ada", "help", {"lat": 51.5, "lng": -0.12})
    assert text.startswith("EMERGENCY ALERT!")
    assert '"help"' in text
    assert "Ada, please check on this person immediately!" in text
    assert "https://www.google.com/maps?q=51.5,-0.12" in text
    assert "Location:" not in compose_sms("Ada", "help", None)
    assert maps_link(None) == ""


def test_compose_twiml_escapes_keyword():
    twiml = compose_twiml("<help & me>")
    assert twiml.startswith("<Response>")
    assert "&lt;help &amp; me&gt;" in twiml


def _response(status_code, body):
    resp = MagicMock()
    resp.status_code = status_code
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


def test_http_provider_posts_batch_with_auth_headers():
    session = MagicMock()
    session.post.return_value = _response(200, {"success": True, "results": []})
    provider = HttpNotificationProvider("https://example.test/send-alert", api_key="k", timeout_s=5, session=session)

    body = asyncio.run(provider.send(REQUEST))

    assert body == {"success": True, "results": []}
    args, kwargs = session.post.call_args
    assert args[0] == "https://example.test/send-alert"
    assert kwargs["json"] == REQUEST
    assert kwargs["headers"]["Authorization"] == "Bearer k"
    assert kwargs["headers"]["apikey"] == "k"
    assert kwargs["timeout"] == 5.0


def test_http_provider_errors():
    session = MagicMock()
    provider = HttpNotificationProvider("https://example.test/send-alert", session=session)

    session.post.return_value = _response(500, {"error": "Twilio credentials not configured"})
    with pytest.raises(ProviderError, match="credentials"):
        asyncio.run(provider.send(REQUEST))

    session.post.return_value = _response(200, ValueError("no json"))
    with pytest.raises(ProviderError, match="non-JSON"):
        asyncio.run(provider.send(REQUEST))

    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ProviderError, match="unreachable"):
        asyncio.run(provider.send(REQUEST))


def test_twilio_provider_texts_everyone_and_calls_primary(tmp_path):
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid="SM1")
    client.calls.create.return_value = MagicMock(sid="CA1")
    log = AlertLog(str(tmp_path / "alerts.jsonl"))
    provider = TwilioNotificationProvider("AC1", "tok", "+15559999", alert_log=log, client=client)

    body = asyncio.run(provider.send(REQUEST))

    assert body["success"] is True
    assert body["results"] == [
        {"contactId": "a", "contactName": "Ada", "smsStatus": "sent", "callStatus": "initiated"},
        {"contactId": "b", "contactName": "Ben", "smsStatus": "sent"},
    ]
    assert client.messages.create.call_count == 2
    assert client.messages.create.call_args_list[0].kwargs["to"] == "+15550000000"
    assert client.messages.create.call_args_list[1].kwargs["to"] == "5550000001"
    client.calls.create.assert_called_once()
    assert client.calls.create.call_args.kwargs["from_"] == "+15559999"

    rows = log.read()
    assert [(r["contact_id"], r["alert_type"], r["status"]) for r in rows] == [
        ("a", "sms", "sent"),
        ("a", "call", "sent"),
        ("b", "sms", "sent"),
    ]
    assert rows[0]["location_lat"] == 51.5
    assert rows[0]["keyword_detected"] == "help"


def test_twilio_provider_records_per_contact_failures(tmp_path):
    client = MagicMock()
    client.messages.create.side_effect = [RuntimeError("invalid number"), MagicMock(sid="SM2")]
    client.calls.create.return_value = MagicMock(sid="CA1")
    log = AlertLog(str(tmp_path / "alerts.jsonl"))
    provider = TwilioNotificationProvider("AC1", "tok", "+15559999", alert_log=log, client=client)

    body = asyncio.run(provider.send(REQUEST))

    first, second = body["results"]
    assert first["smsStatus"] == "failed"
    assert first["callStatus"] == "initiated"
    assert first["error"] == "invalid number"
    assert second["smsStatus"] == "sent"
    assert log.read()[0]["error_message"] == "invalid number"
