"""
app/api/messages.py

Purpose: JSON entry point to the inbound message router

- Lets operators and integration tests replay a reply without Twilio
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_message_router
from app.schemas.reminder import IncomingMessageRequest, IncomingMessageResult
from app.schemas.response import ERROR_RESPONSES

router = APIRouter(prefix="/messages", responses=ERROR_RESPONSES)


@router.post("/incoming", response_model=IncomingMessageResult)
async def incoming_message(
    request: IncomingMessageRequest,
    message_router=Depends(get_message_router)
):
    return await message_router.process_incoming_message(
        request.phone_number,
        request.body,
        to_number=request.to_number
    )
