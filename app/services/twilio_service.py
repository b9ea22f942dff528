"""
app/services/twilio_service.py

Purpose: Twilio SMS sending

- Sends SMS via the Twilio REST API (form post, basic auth)
- Classifies failures into transient vs permanent error kinds
- Bounded retry with exponential backoff for transient failures
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ErrorKind, GatewayError, PermanentGatewayError, TransientGatewayError
from app.core.logging import get_logger
from utils.phone_utils import mask_phone

logger = get_logger(__name__)


# Twilio error codes that will never succeed on retry
PERMANENT_ERROR_CODES: Dict[int, ErrorKind] = {
    21211: ErrorKind.INVALID_RECIPIENT,   # Invalid 'To' number
    21614: ErrorKind.INVALID_RECIPIENT,   # 'To' number is not a valid mobile number
    21408: ErrorKind.REJECTED,            # Region not enabled
    21612: ErrorKind.INVALID_RECIPIENT,   # 'To' number not reachable
    21610: ErrorKind.UNSUBSCRIBED,        # Recipient replied STOP
    20003: ErrorKind.AUTH,                # Authentication failed
}


@dataclass
class SendReceipt:
    """Gateway acknowledgement of an accepted message."""
    id: str
    status: str = "queued"


def classify_response(status_code: int, payload: Optional[Dict[str, Any]]) -> GatewayError:
    """
    Maps a non-2xx Twilio response to a typed gateway error.

    Args:
        status_code: HTTP status of the response
        payload: Parsed JSON body, if any

    Returns:
        TransientGatewayError or PermanentGatewayError
    """
    payload = payload or {}
    provider_code = payload.get("code")
    message = payload.get("message") or f"Twilio API error: {status_code}"
    code_str = str(provider_code) if provider_code is not None else None

    if provider_code in PERMANENT_ERROR_CODES:
        return PermanentGatewayError(message, kind=PERMANENT_ERROR_CODES[provider_code], provider_code=code_str)
    if status_code == 429:
        return TransientGatewayError(message, kind=ErrorKind.RATE_LIMITED, provider_code=code_str)
    if status_code >= 500:
        return TransientGatewayError(message, kind=ErrorKind.SERVER_ERROR, provider_code=code_str)
    if status_code in (401, 403):
        return PermanentGatewayError(message, kind=ErrorKind.AUTH, provider_code=code_str)
    return PermanentGatewayError(message, kind=ErrorKind.REJECTED, provider_code=code_str)


class TwilioGateway:
    """SMS gateway client for the Twilio Messages API"""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        status_callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_FROM_NUMBER
        self.base_url = (base_url or settings.TWILIO_BASE_URL).rstrip("/")
        self.status_callback_url = status_callback_url or settings.TWILIO_STATUS_CALLBACK_URL
        self.timeout = timeout if timeout is not None else settings.SMS_SEND_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.SMS_MAX_ATTEMPTS)
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.SMS_RETRY_BACKOFF_SECONDS
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, to: str, body: str, from_: Optional[str] = None) -> SendReceipt:
        """
        Sends one SMS. No retries.

        Args:
            to: Recipient phone in E.164 format
            body: Message text
            from_: Sender override (defaults to the configured number)

        Returns:
            SendReceipt with the provider message SID

        Raises:
            TransientGatewayError: Network, timeout, 429 or 5xx
            PermanentGatewayError: Invalid recipient, auth or any other rejection
        """
        if not self.is_configured():
            raise PermanentGatewayError("Twilio is not configured", kind=ErrorKind.AUTH)

        data = {
            "From": from_ or self.from_number,
            "To": to,
            "Body": body
        }
        if self.status_callback_url:
            data["StatusCallback"] = self.status_callback_url

        logger.info(f"📤 Sending SMS to {mask_phone(to)}")

        try:
            response = await self._get_client().post(
                self.messages_url,
                data=data,
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.error("Twilio API timeout")
            raise TransientGatewayError("Twilio API timeout", kind=ErrorKind.TIMEOUT) from e
        except httpx.TransportError as e:
            logger.error(f"Twilio transport error: {e}")
            raise TransientGatewayError(f"Twilio transport error: {e}", kind=ErrorKind.NETWORK) from e

        if response.status_code in (200, 201):
            result = response.json()
            logger.info(f"✅ SMS accepted: SID={result.get('sid')}")
            return SendReceipt(id=result.get("sid"), status=result.get("status") or "queued")

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error = classify_response(response.status_code, payload)
        logger.error(
            f"❌ Twilio API error: {response.status_code} "
            f"(code={error.provider_code}, kind={error.kind.value}) - {error.message}"
        )
        raise error

    async def send_with_retry(self, to: str, body: str, from_: Optional[str] = None) -> SendReceipt:
        """
        Sends one SMS, retrying transient failures with exponential backoff.

        Permanent failures are raised immediately. The last transient
        failure is raised once attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.send(to, body, from_=from_)
            except TransientGatewayError as e:
                if attempt >= self.max_attempts:
                    logger.error(f"SMS to {mask_phone(to)} failed after {attempt} attempts: {e.message}")
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Transient SMS failure ({e.kind.value}), retry {attempt}/{self.max_attempts - 1} in {delay:.1f}s"
                )
                await self._sleep(delay)

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured"""
        return bool(
            self.account_sid
            and self.auth_token
            and self.from_number
            and self.account_sid != "your_twilio_sid"
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
