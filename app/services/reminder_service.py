"""
app/services/reminder_service.py

Purpose: Reminder dispatch

- Decides which reminder class (night-before / day-of) is due per placement
- Claims, composes, sends and marks each reminder exactly once
- Isolates per-placement failures; only a failed due-set load fails the cycle
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import CycleError, GatewayError, NotFoundError
from app.core.logging import LogContext, get_logger
from app.flow.states import get_status_metadata
from app.models.associate import Associate
from app.models.job import Job
from app.models.placement import Placement, ReminderType
from app.schemas.reminder import ReminderConfig, ReminderResult, ReminderStatus
from utils.constants import (
    DAY_OF_REMINDER_MESSAGE,
    MESSAGE_KIND_REMINDER,
    NIGHT_BEFORE_REMINDER_MESSAGE,
    SHIFT_DESCRIPTION,
    SHIFT_DESCRIPTION_NO_CUSTOMER
)
from utils.phone_utils import mask_phone, normalize_phone
from utils.time_utils import format_clock_time, format_work_date, reminder_instants, utc_now

logger = get_logger(__name__)

# Writes of the sent flag after the gateway accepted a message
MARK_SENT_ATTEMPTS = 3


def reminder_windows(
    placement: Placement,
    job: Optional[Job],
    config: ReminderConfig
) -> List[Tuple[ReminderType, datetime, datetime]]:
    """
    Computes the half-open send window of each reminder class.

    Night-before: [night_before_at, min(day_of_at, shift_start))
    Day-of:       [day_of_at, shift_start)

    Job-level times and timezone override the configured defaults.
    """
    night_before_time = (job.night_before_time if job else None) or config.night_before_time
    day_of_time = (job.day_of_time if job else None) or config.day_of_time
    tz_name = (job.timezone if job else None) or config.timezone

    night_before_at, day_of_at, shift_start = reminder_instants(
        placement.work_date,
        placement.start_time,
        night_before_time,
        day_of_time,
        tz_name
    )
    return [
        (ReminderType.NIGHT_BEFORE, night_before_at, min(day_of_at, shift_start)),
        (ReminderType.DAY_OF, day_of_at, shift_start),
    ]


def due_reminder_type(
    placement: Placement,
    job: Optional[Job],
    config: ReminderConfig,
    now: datetime
) -> Optional[ReminderType]:
    """
    Returns the unsent reminder class whose window contains now, if any.

    A window that was missed entirely is never sent late.
    """
    if not get_status_metadata(placement.confirmation_status).accepts_reminders:
        return None

    for reminder_type, opens_at, closes_at in reminder_windows(placement, job, config):
        if placement.reminder_sent(reminder_type):
            continue
        if opens_at <= now < closes_at:
            return reminder_type
    return None


def describe_shift(placement: Placement, job: Optional[Job]) -> str:
    """
    Human-readable shift summary, e.g. "Forklift Operator for Acme on Tue, Aug 05 at 9:00 AM".
    """
    title = job.title if job else "your shift"
    date_str = format_work_date(placement.work_date)
    time_str = format_clock_time(placement.start_time)

    if job and job.customer_name:
        return SHIFT_DESCRIPTION.format(title=title, customer=job.customer_name, date=date_str, time=time_str)
    return SHIFT_DESCRIPTION_NO_CUSTOMER.format(title=title, date=date_str, time=time_str)


def compose_reminder(
    reminder_type: ReminderType,
    associate: Associate,
    placement: Placement,
    job: Optional[Job]
) -> str:
    template = (
        NIGHT_BEFORE_REMINDER_MESSAGE
        if reminder_type == ReminderType.NIGHT_BEFORE
        else DAY_OF_REMINDER_MESSAGE
    )
    return template.format(first_name=associate.display_name, shift=describe_shift(placement, job))


class ReminderService:
    """
    Reminder dispatcher.

    Owns no schedule of its own: each call to process_scheduled_reminders
    is one cycle, driven by the scheduler or an operator.
    """

    def __init__(
        self,
        store,
        gateway,
        config: Optional[ReminderConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        send_spacing_seconds: Optional[float] = None
    ):
        self.store = store
        self.gateway = gateway
        self.config = config or ReminderConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self.send_spacing_seconds = (
            send_spacing_seconds if send_spacing_seconds is not None else settings.REMINDER_SEND_SPACING_SECONDS
        )

    async def process_scheduled_reminders(self, now: Optional[datetime] = None) -> List[ReminderResult]:
        """
        Runs one reminder cycle.

        Args:
            now: Evaluation instant (defaults to the service clock)

        Returns:
            One ReminderResult per reminder class attempted or skipped

        Raises:
            CycleError: If the due set cannot be loaded
        """
        now = now or self._clock()

        try:
            placements = await self.store.get_due_assignments(now)
        except Exception as e:
            logger.error(f"Failed to load due placements: {e}", exc_info=True)
            raise CycleError(f"Failed to load due placements: {e}") from e

        logger.info(f"Reminder cycle: {len(placements)} candidate placements")

        results: List[ReminderResult] = []
        sends = 0

        for placement in placements:
            if placement.is_terminal:
                continue

            reminder_type = None
            try:
                job = await self.store.get_job(placement.job_id)
                reminder_type = due_reminder_type(placement, job, self.config, now)
                if reminder_type is None:
                    continue

                if sends and self.send_spacing_seconds > 0:
                    await self._sleep(self.send_spacing_seconds)

                result = await self._send_reminder(placement, job, reminder_type, now)
                if result.status != ReminderStatus.SKIPPED:
                    sends += 1
            except Exception as e:
                logger.error(f"Reminder failed for placement {placement.key}: {e}", exc_info=True)
                result = ReminderResult(
                    job_id=placement.job_id,
                    associate_id=placement.associate_id,
                    reminder_type=reminder_type or ReminderType.NIGHT_BEFORE,
                    status=ReminderStatus.FAILED,
                    error=str(e)
                )

            results.append(result)

        sent = sum(1 for r in results if r.status == ReminderStatus.SENT)
        failed = sum(1 for r in results if r.status == ReminderStatus.FAILED)
        logger.info(f"Reminder cycle finished: sent={sent} failed={failed} skipped={len(results) - sent - failed}")
        return results

    async def send_test_reminder(
        self,
        job_id: str,
        associate_id: str,
        reminder_type: Optional[ReminderType] = None
    ) -> ReminderResult:
        """
        Sends one reminder immediately, ignoring the send windows.

        Uses the first unsent class unless one is requested. The usual
        claim / send / mark path applies, so a class is still sent at most once.

        Raises:
            NotFoundError: If the placement does not exist
        """
        placement = await self.store.get_assignment(job_id, associate_id)
        if placement is None:
            raise NotFoundError("Placement not found", details={"job_id": job_id, "associate_id": associate_id})

        if reminder_type is None:
            reminder_type = next((rt for rt in ReminderType if not placement.reminder_sent(rt)), None)
            if reminder_type is None:
                return self._skipped(placement, ReminderType.DAY_OF, "already_sent")

        if placement.is_terminal:
            return self._skipped(placement, reminder_type, "terminal")
        if placement.reminder_sent(reminder_type):
            return self._skipped(placement, reminder_type, "already_sent")

        job = await self.store.get_job(job_id)
        return await self._send_reminder(placement, job, reminder_type, self._clock())

    async def _send_reminder(
        self,
        placement: Placement,
        job: Optional[Job],
        reminder_type: ReminderType,
        now: datetime
    ) -> ReminderResult:
        with LogContext(
            associate_id=placement.associate_id,
            job_id=placement.job_id,
            reminder_type=reminder_type.value
        ):
            associate = await self.store.get_associate(placement.associate_id)
            if associate is None:
                logger.warning("Associate not found, skipping reminder")
                return self._skipped(placement, reminder_type, "associate_not_found")

            if associate.opted_out:
                logger.info("Associate opted out, skipping reminder")
                return self._skipped(placement, reminder_type, "opted_out")

            phone = normalize_phone(associate.phone_number)
            if not phone:
                logger.error(f"Invalid phone number on file: {mask_phone(associate.phone_number)}")
                return ReminderResult(
                    job_id=placement.job_id,
                    associate_id=placement.associate_id,
                    reminder_type=reminder_type,
                    status=ReminderStatus.FAILED,
                    phone_number=associate.phone_number,
                    error="Invalid phone number",
                    error_kind="INVALID_RECIPIENT"
                )

            claimed = await self.store.claim_reminder(placement.job_id, placement.associate_id, reminder_type, now)
            if not claimed:
                logger.debug("Reminder already sent or claimed by another run")
                return self._skipped(placement, reminder_type, "already_claimed")

            body = compose_reminder(reminder_type, associate, placement, job)

            try:
                receipt = await self.gateway.send_with_retry(phone, body)
            except GatewayError as e:
                await self._release_claim(placement, reminder_type)
                logger.error(f"Reminder send failed ({e.kind.value}): {e.message}")
                return ReminderResult(
                    job_id=placement.job_id,
                    associate_id=placement.associate_id,
                    reminder_type=reminder_type,
                    status=ReminderStatus.FAILED,
                    phone_number=phone,
                    error=e.message,
                    error_kind=e.kind
                )
            except Exception:
                await self._release_claim(placement, reminder_type)
                raise

            reason = None
            if not await self._mark_sent(placement, reminder_type, now):
                reason = "mark_failed"

            await self._log_outbound(receipt.id, phone, body, placement, now)

            logger.info(f"✅ Reminder sent to {mask_phone(phone)} (sid={receipt.id})")
            return ReminderResult(
                job_id=placement.job_id,
                associate_id=placement.associate_id,
                reminder_type=reminder_type,
                status=ReminderStatus.SENT,
                phone_number=phone,
                message_id=receipt.id,
                reason=reason
            )

    async def _mark_sent(self, placement: Placement, reminder_type: ReminderType, now: datetime) -> bool:
        """
        Writes the sent flag for a reminder the gateway already accepted.

        Retries a bounded number of times. If every attempt fails the
        class is flagged as sent-unconfirmed, which no later claim
        overrides, so the associate is not texted twice.
        """
        for attempt in range(1, MARK_SENT_ATTEMPTS + 1):
            try:
                await self.store.mark_reminder_sent(placement.job_id, placement.associate_id, reminder_type, now)
                return True
            except Exception as e:
                logger.warning(f"Marking reminder sent failed (attempt {attempt}/{MARK_SENT_ATTEMPTS}): {e}")

        logger.error("Reminder sent but not marked, flagging as unconfirmed")
        try:
            await self.store.flag_reminder_unconfirmed(placement.job_id, placement.associate_id, reminder_type, now)
        except Exception as e:
            logger.critical(f"Failed to flag unconfirmed reminder, it may be resent: {e}", exc_info=True)
        return False

    async def _release_claim(self, placement: Placement, reminder_type: ReminderType) -> None:
        try:
            await self.store.release_reminder_claim(placement.job_id, placement.associate_id, reminder_type)
        except Exception as e:
            logger.error(f"Failed to release reminder claim: {e}", exc_info=True)

    async def _log_outbound(self, sid: str, phone: str, body: str, placement: Placement, now: datetime) -> None:
        try:
            await self.store.record_outbound_message(
                sid=sid,
                to=phone,
                body=body,
                kind=MESSAGE_KIND_REMINDER,
                job_id=placement.job_id,
                associate_id=placement.associate_id,
                now=now
            )
        except Exception as e:
            logger.warning(f"Failed to log outbound message {sid}: {e}")

    @staticmethod
    def _skipped(placement: Placement, reminder_type: ReminderType, reason: str) -> ReminderResult:
        return ReminderResult(
            job_id=placement.job_id,
            associate_id=placement.associate_id,
            reminder_type=reminder_type,
            status=ReminderStatus.SKIPPED,
            reason=reason
        )
