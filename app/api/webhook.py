"""
app/api/webhook.py

Purpose: Twilio SMS webhook endpoints

- Inbound SMS: parse, hand to the message router, answer with empty TwiML
- Delivery status callbacks: best-effort update of the outbound log
- Replies are sent through the REST API, never inline TwiML
"""

from typing import Dict

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.deps import get_form_fields, get_message_router
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.schemas.webhook import parse_inbound_fields, parse_status_fields
from utils.phone_utils import mask_phone

logger = get_logger(__name__)
router = APIRouter()

EMPTY_TWIML = "<?xml version=\"1.0\" encoding=\"UTF-8\"?><Response></Response>"


@router.post("/webhook/sms")
async def sms_webhook(
    fields: Dict[str, str] = Depends(get_form_fields),
    message_router=Depends(get_message_router)
):
    """
    Twilio inbound SMS webhook.

    Malformed payloads get a 422 error envelope. Processing problems are
    reported in the router result and logged; Twilio always gets TwiML.
    """
    message = parse_inbound_fields(fields)
    logger.info(f"📱 Inbound SMS {message.message_id} from {mask_phone(message.from_number)}")

    result = await message_router.process_incoming_message(
        message.from_number,
        message.body,
        to_number=message.to_number
    )

    if not result.success:
        logger.info(f"Inbound SMS {message.message_id} not applied: {result.error}")

    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/webhook/status")
async def status_webhook(
    fields: Dict[str, str] = Depends(get_form_fields),
    message_router=Depends(get_message_router)
):
    """
    Twilio message status callback. Always acknowledged with 200.
    """
    try:
        callback = parse_status_fields(fields)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed status callback: {e.details}")
        return {"status": "ignored"}

    recorded = await message_router.record_status_callback(callback)
    return {"status": "ok", "recorded": recorded}
