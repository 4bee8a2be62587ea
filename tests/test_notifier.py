"""Tests for outbound messaging."""

import json
from unittest.mock import MagicMock

import pytest

from leadsync.notifier import DryRunNotifier, TwilioNotifier, build_notifier, format_destination


def test_format_destination():
    assert format_destination("98765 43210") == "919876543210"
    assert format_destination("+91 (98765) 43210") == "919876543210"
    assert format_destination("9876543210", country_code="1") == "19876543210"
    assert format_destination("12345") is None
    assert format_destination(None) is None


@pytest.mark.asyncio
async def test_twilio_notifier_sends_content_template():
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid="SM123")
    notifier = TwilioNotifier(client=client, from_number="+14155238886")

    result = await notifier.send("919876543210", "HX123", ["Asha", "AMA Legal Solutions", "Priya", "919876543210"])

    assert result.success is True
    assert result.message_id == "SM123"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["to"] == "whatsapp:+919876543210"
    assert kwargs["from_"] == "whatsapp:+14155238886"
    assert kwargs["content_sid"] == "HX123"
    assert json.loads(kwargs["content_variables"]) == {
        "1": "Asha",
        "2": "AMA Legal Solutions",
        "3": "Priya",
        "4": "919876543210",
    }


@pytest.mark.asyncio
async def test_twilio_failure_is_a_result_not_an_exception():
    client = MagicMock()
    client.messages.create.side_effect = RuntimeError("21211 invalid 'To' number")
    notifier = TwilioNotifier(client=client, from_number="whatsapp:+14155238886")

    result = await notifier.send("919876543210", "HX123", [])
    assert result.success is False
    assert "invalid" in result.reason


@pytest.mark.asyncio
async def test_dry_run_records_sends():
    notifier = DryRunNotifier()
    result = await notifier.send("919876543210", "HX123", ["a"])
    assert result.success
    assert notifier.sent == [("919876543210", "HX123", ["a"])]


def test_build_notifier_without_credentials_is_dry_run():
    assert isinstance(build_notifier(), DryRunNotifier)


def test_build_notifier_with_credentials_uses_twilio(monkeypatch):
    from leadsync.config import Config

    monkeypatch.setattr(Config, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(Config, "TWILIO_AUTH_TOKEN", "token")
    monkeypatch.setattr(Config, "TWILIO_WHATSAPP_FROM", "+14155238886")
    monkeypatch.setattr("twilio.rest.Client", MagicMock())

    assert isinstance(build_notifier(), TwilioNotifier)
