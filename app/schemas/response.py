"""
app/schemas/response.py

Purpose: JSON error envelope returned by every ShiftConfirm API route

Webhook routes answer Twilio with TwiML instead and never use it.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Body of every non-2xx JSON response.

    Example (gateway rejected a test reminder):
        {"error": "Invalid 'To' number", "code": "GATEWAY_PERMANENT",
         "details": {"kind": "INVALID_RECIPIENT", "provider_code": "21211"}}
    """
    error: str = Field(..., description="Human-readable message")
    code: str = Field(..., description="Stable machine code, e.g. NOT_FOUND or AMBIGUOUS_PLACEMENT")
    details: Optional[Any] = Field(None, description="Extra context: ids, validation errors or gateway error kind")


# OpenAPI entries for routers whose handlers raise ShiftConfirmError subclasses
ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    404: {"model": ErrorResponse, "description": "Placement, associate or job not found"},
    409: {"model": ErrorResponse, "description": "Placement changed concurrently"},
    422: {"model": ErrorResponse, "description": "Invalid input"},
    502: {"model": ErrorResponse, "description": "SMS gateway rejected or failed the send"},
}
