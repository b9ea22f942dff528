from enum import Enum
from typing import Optional, Any


class ErrorKind(str, Enum):
    """
    Classifies gateway failures so retry decisions never depend on error text.
    """
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"
    UNSUBSCRIBED = "UNSUBSCRIBED"
    AUTH = "AUTH"
    REJECTED = "REJECTED"

    @property
    def is_transient(self) -> bool:
        return self in _TRANSIENT_KINDS


_TRANSIENT_KINDS = {
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
}


class ShiftConfirmError(Exception):
    """
    Base exception for the shift confirmation service.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundError(ShiftConfirmError):
    """
    Raised when an associate, job or placement cannot be resolved.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class AmbiguousPlacementError(NotFoundError):
    """
    Raised when an inbound reply matches more than one active placement.
    """
    def __init__(self, message: str = "More than one active placement", details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.code = "AMBIGUOUS_PLACEMENT"


class ValidationError(ShiftConfirmError):
    """
    Raised when input validation fails. Never retried.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class AuthenticationError(ShiftConfirmError):
    """
    Raised when a webhook signature does not verify.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)


class GatewayError(ShiftConfirmError):
    """
    Raised when the SMS gateway rejects or fails a request.
    """
    def __init__(
        self,
        message: str = "SMS gateway error",
        kind: ErrorKind = ErrorKind.REJECTED,
        provider_code: Optional[str] = None,
        details: Optional[Any] = None
    ):
        super().__init__(message, code="GATEWAY_ERROR", status_code=502, details=details)
        self.kind = kind
        self.provider_code = provider_code

    @property
    def is_transient(self) -> bool:
        return self.kind.is_transient


class TransientGatewayError(GatewayError):
    """
    Network, timeout, throttling or provider-side failure. Safe to retry.
    """
    def __init__(self, message: str = "Transient SMS gateway error", kind: ErrorKind = ErrorKind.NETWORK, **kwargs):
        super().__init__(message, kind=kind, **kwargs)
        self.code = "GATEWAY_TRANSIENT"


class PermanentGatewayError(GatewayError):
    """
    Invalid recipient, auth failure or unsubscribed recipient. Never retried.
    """
    def __init__(self, message: str = "Permanent SMS gateway error", kind: ErrorKind = ErrorKind.REJECTED, **kwargs):
        super().__init__(message, kind=kind, **kwargs)
        self.code = "GATEWAY_PERMANENT"


class CycleError(ShiftConfirmError):
    """
    Raised when a whole reminder cycle fails before producing per-placement results.
    """
    def __init__(self, message: str = "Reminder cycle failed", details: Optional[Any] = None):
        super().__init__(message, code="CYCLE_ERROR", status_code=500, details=details)


class ConcurrentUpdateError(ShiftConfirmError):
    """
    Raised when a conditional placement update loses a race with another writer.
    """
    def __init__(self, message: str = "Placement was modified concurrently", details: Optional[Any] = None):
        super().__init__(message, code="CONCURRENT_UPDATE", status_code=409, details=details)
