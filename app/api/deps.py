"""
app/api/deps.py

Purpose: FastAPI dependencies

- Service instances built in the app lifespan, read from app.state
- Twilio webhook signature check
"""

from typing import Dict

from fastapi import Request

from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.logging import get_logger
from app.core.security import is_valid_twilio_signature

logger = get_logger(__name__)


def get_reminder_service(request: Request):
    return request.app.state.reminder_service


def get_scheduler(request: Request):
    return request.app.state.scheduler


def get_message_router(request: Request):
    return request.app.state.message_router


async def get_form_fields(request: Request) -> Dict[str, str]:
    """
    Reads the Twilio form body and, when enabled, verifies its signature.

    Raises:
        AuthenticationError: If signature validation is on and the header does not match
    """
    form = await request.form()
    fields = {key: str(value) for key, value in form.items()}

    if settings.TWILIO_VALIDATE_SIGNATURE:
        signature = request.headers.get("X-Twilio-Signature")
        if not is_valid_twilio_signature(str(request.url), fields, signature, settings.TWILIO_AUTH_TOKEN):
            logger.warning(f"Rejected webhook with invalid signature: {request.url.path}")
            raise AuthenticationError("Invalid Twilio signature")

    return fields
