"""Tests for Twilio webhook parsing and signature checks."""

import pytest

from app.core.exceptions import ValidationError
from app.core.security import compute_twilio_signature, is_valid_twilio_signature
from app.schemas.webhook import (
    InboundMessage,
    StatusCallback,
    parse_inbound_fields,
    parse_status_fields,
    parse_twilio_webhook,
)


class TestInbound:

    def test_parses_and_normalizes(self):
        message = parse_inbound_fields({
            "From": "whatsapp:+1 303 555 0100",
            "To": "+17205550199",
            "Body": " C ",
            "MessageSid": "SM123",
        })
        assert message.from_number == "+13035550100"
        assert message.to_number == "+17205550199"
        assert message.body == " C "
        assert message.message_id == "SM123"

    def test_missing_fields_listed(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_inbound_fields({"From": "+13035550100"})
        assert exc_info.value.details == {"missing": ["Body", "MessageSid"]}

    def test_empty_body_is_allowed(self):
        message = parse_inbound_fields({"From": "+13035550100", "Body": "", "MessageSid": "SM1"})
        assert message.body == ""

    def test_invalid_sender(self):
        with pytest.raises(ValidationError):
            parse_inbound_fields({"From": "12345", "Body": "C", "MessageSid": "SM1"})


class TestStatusCallback:

    def test_parses_failure(self):
        callback = parse_status_fields({
            "MessageSid": "SM9",
            "MessageStatus": "Undelivered",
            "ErrorCode": "30003",
        })
        assert callback.status == "undelivered"
        assert callback.error_code == "30003"

    def test_missing_status(self):
        with pytest.raises(ValidationError):
            parse_status_fields({"MessageSid": "SM9"})


class TestDetection:

    def test_status_callback_detected(self):
        event = parse_twilio_webhook({"MessageSid": "SM9", "MessageStatus": "delivered"})
        assert isinstance(event, StatusCallback)

    def test_inbound_detected(self):
        event = parse_twilio_webhook({"From": "+13035550100", "Body": "YES", "MessageSid": "SM1"})
        assert isinstance(event, InboundMessage)
        assert event.kind == "inbound"


class TestSignature:

    URL = "https://example.com/api/v1/webhook/sms"
    PARAMS = {"From": "+13035550100", "Body": "C", "MessageSid": "SM1"}

    def test_round_trip(self):
        signature = compute_twilio_signature(self.URL, self.PARAMS, "secret")
        assert is_valid_twilio_signature(self.URL, self.PARAMS, signature, "secret")

    def test_param_order_does_not_matter(self):
        reordered = dict(reversed(list(self.PARAMS.items())))
        assert compute_twilio_signature(self.URL, reordered, "secret") == compute_twilio_signature(self.URL, self.PARAMS, "secret")

    def test_tampered_body_rejected(self):
        signature = compute_twilio_signature(self.URL, self.PARAMS, "secret")
        tampered = {**self.PARAMS, "Body": "D"}
        assert not is_valid_twilio_signature(self.URL, tampered, signature, "secret")

    def test_missing_header_rejected(self):
        assert not is_valid_twilio_signature(self.URL, self.PARAMS, None, "secret")
