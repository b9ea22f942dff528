"""
app/flow/dispatcher.py

Purpose: Inbound SMS router

- Resolves the sender to an associate by normalized phone number
- Classifies the reply (confirm / decline / help / opt-out / opt-in)
- Applies the confirmation transition to the single active placement
- Sends the acknowledgment, always gated by a fresh opt-out read
"""

import re
from datetime import datetime
from typing import Callable, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import AmbiguousPlacementError, ConcurrentUpdateError, GatewayError, NotFoundError
from app.core.logging import LogContext, get_logger
from app.flow.states import (
    ConfirmationEvent,
    ConfirmationStatus,
    TransitionOutcome,
    TransitionResult,
    apply_event
)
from app.models.associate import Associate
from app.models.placement import Placement
from app.schemas.reminder import IncomingMessageResult, MessageAction
from app.schemas.webhook import StatusCallback
from app.services.assignment_store import sort_placements
from app.services.reminder_service import describe_shift
from utils.constants import (
    ALREADY_CONFIRMED_MESSAGE,
    ALREADY_DECLINED_MESSAGE,
    AMBIGUOUS_PLACEMENT_MESSAGE,
    CONFIRM_KEYWORDS,
    CONFIRMATION_ACK_MESSAGE,
    CONFIRMED_CANNOT_DECLINE_MESSAGE,
    DECLINE_ACK_MESSAGE,
    DECLINE_KEYWORDS,
    HELP_KEYWORDS,
    HELP_MESSAGE,
    MESSAGE_KIND_ACK,
    NO_ACTIVE_PLACEMENT_MESSAGE,
    OPT_IN_KEYWORDS,
    OPT_IN_MESSAGE,
    OPT_OUT_KEYWORDS,
    OPT_OUT_MESSAGE,
    UNKNOWN_MESSAGE
)
from utils.phone_utils import mask_phone, normalize_phone
from utils.time_utils import utc_now

logger = get_logger(__name__)

MAX_TRANSITION_ATTEMPTS = 3

_PUNCTUATION = re.compile(r"[^\w\s']")
_WHITESPACE = re.compile(r"\s+")


def normalize_reply(text: Optional[str]) -> str:
    """
    Lower-cases, strips punctuation (apostrophes kept) and collapses whitespace.

    "  Yes!! " -> "yes", "I’ll be there." -> "i'll be there"
    """
    if not text:
        return ""
    value = text.replace("’", "'").lower()
    value = _PUNCTUATION.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def classify_message(text: Optional[str]) -> MessageAction:
    """
    Maps a reply to an action by exact keyword match.
    """
    reply = normalize_reply(text)

    if reply in OPT_OUT_KEYWORDS:
        return MessageAction.OPT_OUT
    if reply in OPT_IN_KEYWORDS:
        return MessageAction.OPT_IN
    if reply in HELP_KEYWORDS:
        return MessageAction.HELP
    if reply in CONFIRM_KEYWORDS:
        return MessageAction.CONFIRMATION
    if reply in DECLINE_KEYWORDS:
        return MessageAction.DECLINE
    return MessageAction.UNKNOWN


class IncomingMessageRouter:
    """
    Handles one inbound reply end to end and returns a structured result.

    Never raises: store and gateway failures are reported in the result.
    """

    def __init__(self, store, gateway, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.gateway = gateway
        self._clock = clock

    async def process_incoming_message(
        self,
        phone_number: str,
        raw_text: str,
        to_number: Optional[str] = None
    ) -> IncomingMessageResult:
        """
        Routes an inbound SMS.

        Args:
            phone_number: Sender, in any common format (whatsapp:/sms: prefixes allowed)
            raw_text: Message body
            to_number: Our number the message was sent to; replies go out from it

        Returns:
            IncomingMessageResult
        """
        phone = normalize_phone(phone_number)
        if not phone:
            logger.warning(f"Inbound message from invalid number {phone_number!r}")
            return IncomingMessageResult(
                success=False,
                action=MessageAction.UNKNOWN,
                phone_number=phone_number,
                message=raw_text or "",
                error="Invalid phone number"
            )

        action = classify_message(raw_text)
        base = {"phone_number": phone, "message": raw_text or "", "action": action}

        try:
            associate = await self.store.get_associate_by_phone(phone)
            if associate is None:
                logger.info(f"📨 Message from unknown number {mask_phone(phone)}")
                return IncomingMessageResult(**{**base, "action": MessageAction.UNKNOWN},
                                             success=False, error="Associate not found")

            with LogContext(associate_id=associate.id, action=action.value):
                logger.info(f"📨 Inbound reply classified as {action.value}")
                return await self._dispatch(action, associate, base, to_number)

        except Exception as e:
            logger.error(f"❌ Router error: {e}", exc_info=True)
            return IncomingMessageResult(**base, success=False, error=str(e))

    async def _dispatch(self, action: MessageAction, associate: Associate, base: dict, to_number: Optional[str]):
        if action == MessageAction.OPT_OUT:
            return await self._handle_opt_out(associate, base, to_number)
        if action == MessageAction.OPT_IN:
            return await self._handle_opt_in(associate, base, to_number)
        if action == MessageAction.HELP:
            body = HELP_MESSAGE.format(
                first_name=associate.display_name,
                company_phone=settings.COMPANY_PHONE_DISPLAY
            )
            sent, error = await self._reply(associate, body, to_number)
            return IncomingMessageResult(**base, success=True, associate_id=associate.id,
                                         response_sent=sent, error=error)
        if action in (MessageAction.CONFIRMATION, MessageAction.DECLINE):
            event = ConfirmationEvent.CONFIRM if action == MessageAction.CONFIRMATION else ConfirmationEvent.DECLINE
            return await self._handle_reply(associate, event, base, to_number)

        body = UNKNOWN_MESSAGE.format(first_name=associate.display_name)
        sent, error = await self._reply(associate, body, to_number)
        return IncomingMessageResult(**base, success=True, associate_id=associate.id,
                                     response_sent=sent, error=error)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    async def _handle_opt_out(self, associate: Associate, base: dict, to_number: Optional[str]):
        associate = await self.store.set_opt_out(associate.id, True, self._clock())
        logger.info("🚫 Associate opted out of SMS")

        # Carriers expect exactly one confirmation after STOP
        body = OPT_OUT_MESSAGE.format(first_name=associate.display_name)
        sent, error = await self._reply(associate, body, to_number, force=True)
        return IncomingMessageResult(**base, success=True, associate_id=associate.id,
                                     response_sent=sent, error=error)

    async def _handle_opt_in(self, associate: Associate, base: dict, to_number: Optional[str]):
        associate = await self.store.set_opt_out(associate.id, False, self._clock())
        logger.info("✅ Associate opted back in to SMS")

        body = OPT_IN_MESSAGE.format(first_name=associate.display_name)
        sent, error = await self._reply(associate, body, to_number)
        return IncomingMessageResult(**base, success=True, associate_id=associate.id,
                                     response_sent=sent, error=error)

    # ------------------------------------------------------------------
    # Confirm / decline
    # ------------------------------------------------------------------

    async def _handle_reply(
        self,
        associate: Associate,
        event: ConfirmationEvent,
        base: dict,
        to_number: Optional[str]
    ) -> IncomingMessageResult:
        now = self._clock()

        try:
            placement = await self.store.get_active_assignment(associate.id, now)
        except AmbiguousPlacementError as e:
            logger.warning(f"Ambiguous reply: {e.message}")
            body = AMBIGUOUS_PLACEMENT_MESSAGE.format(
                first_name=associate.display_name,
                company_phone=settings.COMPANY_PHONE_DISPLAY
            )
            sent, _ = await self._reply(associate, body, to_number)
            return IncomingMessageResult(**{**base, "action": MessageAction.UNKNOWN}, success=False,
                                         associate_id=associate.id, response_sent=sent, error=e.message)

        if placement is None:
            settled = await self._latest_settled_placement(associate.id, now)
            if settled is not None:
                transition = TransitionResult(
                    settled.confirmation_status,
                    settled.confirmation_status,
                    TransitionOutcome.ALREADY_TERMINAL
                )
                return await self._acknowledge(associate, settled, event, transition, base, to_number)

            logger.info("No active placement for reply")
            body = NO_ACTIVE_PLACEMENT_MESSAGE.format(first_name=associate.display_name)
            sent, _ = await self._reply(associate, body, to_number)
            return IncomingMessageResult(**{**base, "action": MessageAction.UNKNOWN}, success=False,
                                         associate_id=associate.id, response_sent=sent,
                                         error="No active placement")

        with LogContext(job_id=placement.job_id):
            placement, transition = await self._transition(placement, event, now)
            logger.info(
                f"Placement {transition.previous.value} -> {transition.current.value} ({transition.outcome.value})"
            )
            return await self._acknowledge(associate, placement, event, transition, base, to_number)

    async def _transition(
        self,
        placement: Placement,
        event: ConfirmationEvent,
        now: datetime
    ) -> Tuple[Placement, TransitionResult]:
        """
        Applies the event with an optimistic version check, re-reading on conflict.

        Raises:
            ConcurrentUpdateError: If every attempt lost a race
            NotFoundError: If the placement disappeared
        """
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            transition = apply_event(placement.confirmation_status, event)
            if not transition.changed:
                return placement, transition

            fields: dict = {
                "confirmation_status": transition.current,
                "last_activity_time": now,
            }
            if event == ConfirmationEvent.CONFIRM:
                fields["last_confirmation_time"] = now

            try:
                updated = await self.store.update_assignment(
                    placement.job_id,
                    placement.associate_id,
                    fields,
                    expected_version=placement.version
                )
                return updated, transition
            except ConcurrentUpdateError:
                logger.warning(f"Concurrent placement update, re-reading (attempt {attempt})")
                placement = await self.store.get_assignment(placement.job_id, placement.associate_id)
                if placement is None:
                    raise NotFoundError("Placement disappeared during update")

        raise ConcurrentUpdateError(
            "Placement kept changing during update",
            details={"job_id": placement.job_id, "associate_id": placement.associate_id}
        )

    async def _latest_settled_placement(self, associate_id: str, now: datetime) -> Optional[Placement]:
        """Nearest upcoming CONFIRMED/DECLINED placement, for "already ..." replies."""
        candidates = await self.store.get_active_assignments(associate_id, now, include_terminal=True)
        settled = [p for p in candidates if p.is_terminal]
        if not settled:
            return None
        return sort_placements(settled)[0]

    async def _acknowledge(
        self,
        associate: Associate,
        placement: Placement,
        event: ConfirmationEvent,
        transition: TransitionResult,
        base: dict,
        to_number: Optional[str]
    ) -> IncomingMessageResult:
        job = await self.store.get_job(placement.job_id)
        shift = describe_shift(placement, job)

        if transition.outcome == TransitionOutcome.ADVANCED:
            body = CONFIRMATION_ACK_MESSAGE.format(first_name=associate.display_name, shift=shift)
        elif transition.outcome == TransitionOutcome.DECLINED:
            body = DECLINE_ACK_MESSAGE.format(first_name=associate.display_name, shift=shift)
        elif transition.current == ConfirmationStatus.CONFIRMED and event == ConfirmationEvent.CONFIRM:
            body = ALREADY_CONFIRMED_MESSAGE.format(first_name=associate.display_name, shift=shift)
        elif transition.current == ConfirmationStatus.CONFIRMED:
            body = CONFIRMED_CANNOT_DECLINE_MESSAGE.format(
                first_name=associate.display_name,
                shift=shift,
                company_phone=settings.COMPANY_PHONE_DISPLAY
            )
        else:
            body = ALREADY_DECLINED_MESSAGE.format(
                first_name=associate.display_name,
                shift=shift,
                company_phone=settings.COMPANY_PHONE_DISPLAY
            )

        sent, error = await self._reply(associate, body, to_number, placement=placement)
        return IncomingMessageResult(
            **base,
            success=True,
            associate_id=associate.id,
            job_id=placement.job_id,
            previous_status=transition.previous,
            new_status=transition.current,
            outcome=transition.outcome,
            response_sent=sent,
            error=error
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _reply(
        self,
        associate: Associate,
        body: str,
        to_number: Optional[str],
        placement: Optional[Placement] = None,
        force: bool = False
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Sends an acknowledgment unless the associate has opted out.

        Returns:
            (body sent or None, error text or None)
        """
        if not force:
            fresh = await self.store.get_associate(associate.id)
            if fresh is None or fresh.opted_out:
                logger.info("Associate opted out, acknowledgment suppressed")
                return None, None

        try:
            receipt = await self.gateway.send_with_retry(associate.phone_number, body, from_=to_number)
        except GatewayError as e:
            logger.error(f"Acknowledgment send failed ({e.kind.value}): {e.message}")
            return None, e.message

        try:
            await self.store.record_outbound_message(
                sid=receipt.id,
                to=associate.phone_number,
                body=body,
                kind=MESSAGE_KIND_ACK,
                job_id=placement.job_id if placement else None,
                associate_id=associate.id,
                now=self._clock()
            )
        except Exception as e:
            logger.warning(f"Failed to log outbound message {receipt.id}: {e}")

        return body, None

    async def record_status_callback(self, callback: StatusCallback) -> bool:
        """
        Updates the delivery status of a logged message. Best-effort.
        """
        try:
            matched = await self.store.update_message_status(
                callback.message_id,
                callback.status,
                error_code=callback.error_code,
                now=self._clock()
            )
        except Exception as e:
            logger.warning(f"Failed to record status for {callback.message_id}: {e}")
            return False

        if callback.error_code:
            logger.warning(f"Message {callback.message_id} {callback.status} (error {callback.error_code})")
        else:
            logger.debug(f"Message {callback.message_id} {callback.status}")
        return bool(matched)
