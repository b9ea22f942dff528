"""
app/core/errors.py

Purpose: Maps exceptions to the ErrorResponse envelope

- ShiftConfirmError subclasses keep their own status and code
- Gateway failures expose the error kind and Twilio code in details
- Anything unhandled becomes a 500 with the message hidden in production
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.exceptions import GatewayError, ShiftConfirmError
from app.core.logging import get_logger
from app.schemas.response import ErrorResponse

logger = get_logger(__name__)


def error_response(status_code: int, error: str, code: str, details: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, code=code, details=details).model_dump()
    )


def gateway_details(exc: GatewayError) -> dict:
    """Error kind and provider code, plus any details the caller attached."""
    details = {"kind": exc.kind.value, "provider_code": exc.provider_code}
    if isinstance(exc.details, dict):
        details.update(exc.details)
    return details


def add_exception_handlers(app: FastAPI):
    """
    Registers the ShiftConfirm exception handlers on the app.
    """
    @app.exception_handler(ShiftConfirmError)
    async def shiftconfirm_exception_handler(request: Request, exc: ShiftConfirmError):
        """
        Placement lookups (404, AMBIGUOUS_PLACEMENT), version conflicts (409),
        bad operator input (422) and gateway failures (502).
        """
        details = gateway_details(exc) if isinstance(exc, GatewayError) else exc.details

        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")

        return error_response(exc.status_code, exc.message, exc.code, details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Unknown routes and methods
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Malformed operator requests and webhook forms missing From/Body/MessageSid.
        """
        return error_response(422, "Input validation failed", "VALIDATION_ERROR", exc.errors())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else "unknown"
            },
            exc_info=True
        )

        message = "An internal error occurred. Please try again later." if settings.is_production else str(exc)
        return error_response(500, message, "INTERNAL_ERROR")
