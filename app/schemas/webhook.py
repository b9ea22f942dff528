"""
app/schemas/webhook.py

Purpose: SMS webhook payload schemas and parsers

- Validates inbound messages and delivery status callbacks from Twilio
- Normalizes loosely-typed form fields into small validated DTOs
- Missing or malformed fields raise ValidationError before any business logic
"""

from datetime import datetime
from typing import Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from app.core.exceptions import ValidationError
from utils.phone_utils import normalize_phone


class InboundMessage(BaseModel):
    """
    Normalized inbound SMS for internal processing.
    """
    kind: Literal["inbound"] = "inbound"
    from_number: str = Field(..., description="Sender phone in E.164 format")
    to_number: Optional[str] = Field(None, description="Our number that received the message")
    body: str = Field(..., description="Message text content")
    message_id: str = Field(..., description="Provider message identifier")
    received_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "inbound",
                "from_number": "+13035550100",
                "to_number": "+17205550199",
                "body": "C",
                "message_id": "SM0123456789abcdef"
            }
        }


class StatusCallback(BaseModel):
    """
    Delivery status update for a previously sent message.
    """
    kind: Literal["status"] = "status"
    message_id: str
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None


WebhookEvent = Union[InboundMessage, StatusCallback]


def _field(fields: Mapping, name: str) -> Optional[str]:
    value = fields.get(name)
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def parse_inbound_fields(fields: Mapping) -> InboundMessage:
    """
    Parses a Twilio inbound SMS webhook.

    Twilio format (form data):
    - From: +13035550100 (or whatsapp:+13035550100)
    - To: +17205550199
    - Body: message text
    - MessageSid: SMxxxx

    Raises:
        ValidationError: If From/Body/MessageSid are missing or From is not a phone number
    """
    raw_from = _field(fields, "From")
    body = fields.get("Body")
    message_sid = _field(fields, "MessageSid") or _field(fields, "SmsSid")

    missing = [
        name for name, value in (("From", raw_from), ("Body", body), ("MessageSid", message_sid))
        if value is None
    ]
    if missing:
        raise ValidationError("Missing webhook fields", details={"missing": missing})

    from_number = normalize_phone(raw_from)
    if not from_number:
        raise ValidationError("Invalid sender phone number", details={"From": raw_from})

    raw_to = _field(fields, "To")

    return InboundMessage(
        from_number=from_number,
        to_number=normalize_phone(raw_to) if raw_to else None,
        body=str(body),
        message_id=message_sid
    )


def parse_status_fields(fields: Mapping) -> StatusCallback:
    """
    Parses a Twilio message status callback.

    Twilio format (form data):
    - MessageSid: SMxxxx
    - MessageStatus: queued | sent | delivered | undelivered | failed
    - ErrorCode / ErrorMessage: present on failures

    Raises:
        ValidationError: If MessageSid or MessageStatus is missing
    """
    message_sid = _field(fields, "MessageSid") or _field(fields, "SmsSid")
    status = _field(fields, "MessageStatus") or _field(fields, "SmsStatus")

    missing = [
        name for name, value in (("MessageSid", message_sid), ("MessageStatus", status))
        if value is None
    ]
    if missing:
        raise ValidationError("Missing status callback fields", details={"missing": missing})

    return StatusCallback(
        message_id=message_sid,
        status=status.lower(),
        error_code=_field(fields, "ErrorCode"),
        error_message=_field(fields, "ErrorMessage")
    )


def parse_twilio_webhook(fields: Mapping) -> WebhookEvent:
    """
    Detects the webhook type and parses it into the matching DTO.

    Status callbacks carry MessageStatus; inbound messages carry Body.
    """
    if _field(fields, "MessageStatus") or _field(fields, "SmsStatus"):
        if fields.get("Body") is None:
            return parse_status_fields(fields)
    return parse_inbound_fields(fields)
