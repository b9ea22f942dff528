"""
app/services/assignment_store.py

Purpose: Placement / associate persistence (MongoDB)

- Due-placement and active-placement queries
- Conditional (atomic) updates: reminder claims, sent flags, versioned status writes
- Associate lookup by phone and opt-out toggling
- Best-effort outbound message log
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.core.exceptions import AmbiguousPlacementError, ConcurrentUpdateError, NotFoundError
from app.core.logging import get_logger
from app.db.mongo import (
    get_assignments_collection,
    get_associates_collection,
    get_jobs_collection,
    get_messages_collection
)
from app.flow.states import TERMINAL_STATUSES
from app.models.associate import Associate
from app.models.job import Job
from app.models.placement import Placement, ReminderType
from utils.time_utils import local_date, local_to_utc, parse_clock_time

logger = get_logger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]

# Replies shortly after a shift starts still resolve to that shift
ACTIVE_PLACEMENT_GRACE = timedelta(hours=2)


def sort_placements(placements: List[Placement]) -> List[Placement]:
    """Orders placements by work date, then local start time."""
    return sorted(placements, key=lambda p: (p.work_date, parse_clock_time(p.start_time)))


def select_active_placement(candidates: List[Placement]) -> Optional[Placement]:
    """
    Picks the single active placement from upcoming, non-terminal candidates.

    The nearest work date wins. Two or more candidates on that date
    cannot be told apart from a bare "C" reply.

    Raises:
        AmbiguousPlacementError: If the nearest date holds more than one placement
    """
    live = sort_placements([p for p in candidates if not p.is_terminal])
    if not live:
        return None

    nearest_date = live[0].work_date
    same_day = [p for p in live if p.work_date == nearest_date]

    if len(same_day) > 1:
        raise AmbiguousPlacementError(
            f"{len(same_day)} placements on {nearest_date.isoformat()}",
            details={"job_ids": [p.job_id for p in same_day]}
        )
    return live[0]


class MongoAssignmentStore:
    """
    Assignment Store adapter backed by motor collections.

    Every mutation of shared state (sent flags, confirmation status,
    opt-out) is a single conditional find_one_and_update, so concurrent
    handlers never overwrite each other.
    """

    def __init__(
        self,
        assignments,
        associates,
        jobs,
        messages=None,
        timezone: str = None,
        claim_ttl_seconds: int = None
    ):
        self.assignments = assignments
        self.associates = associates
        self.jobs = jobs
        self.messages = messages
        self.timezone = timezone or settings.REMINDER_TIMEZONE
        self.claim_ttl = timedelta(
            seconds=claim_ttl_seconds if claim_ttl_seconds is not None else settings.REMINDER_CLAIM_TTL_SECONDS
        )

    @classmethod
    def from_database(cls) -> "MongoAssignmentStore":
        """Builds a store over the collections of the connected database."""
        return cls(
            assignments=get_assignments_collection(),
            associates=get_associates_collection(),
            jobs=get_jobs_collection(),
            messages=get_messages_collection()
        )

    # ------------------------------------------------------------------
    # Placements
    # ------------------------------------------------------------------

    async def get_due_assignments(self, now: datetime) -> List[Placement]:
        """
        Returns non-terminal placements that may have a reminder due around now.

        This is a coarse date-range scan; the dispatcher decides the exact
        window per placement and reminder class.
        """
        today = local_date(now, self.timezone)
        date_from = (today - timedelta(days=1)).isoformat()
        date_to = (today + timedelta(days=2)).isoformat()

        query = {
            "confirmation_status": {"$nin": TERMINAL_VALUES},
            "work_date": {"$gte": date_from, "$lte": date_to},
            "$or": [
                {"night_before_sent": {"$ne": True}},
                {"day_of_sent": {"$ne": True}},
            ],
        }

        cursor = self.assignments.find(query).sort([("work_date", ASCENDING), ("start_time", ASCENDING)])
        docs = await cursor.to_list(length=None)
        logger.debug(f"Due scan {date_from}..{date_to} returned {len(docs)} placements")
        return [Placement(**doc) for doc in docs]

    async def get_assignment(self, job_id: str, associate_id: str) -> Optional[Placement]:
        doc = await self.assignments.find_one({"job_id": job_id, "associate_id": associate_id})
        return Placement(**doc) if doc else None

    async def get_active_assignments(
        self,
        associate_id: str,
        now: datetime,
        horizon_days: int = None,
        include_terminal: bool = False
    ) -> List[Placement]:
        """
        Returns the associate's upcoming placements within the horizon.

        Terminal (CONFIRMED / DECLINED) placements are left out unless
        include_terminal is set. Shift starts are resolved in the job's
        own timezone when it has one.
        """
        horizon_days = horizon_days if horizon_days is not None else settings.ACTIVE_PLACEMENT_HORIZON_DAYS
        today = local_date(now, self.timezone)

        # One day of slack covers jobs west of the default zone
        query: Dict[str, Any] = {
            "associate_id": associate_id,
            "work_date": {
                "$gte": (today - timedelta(days=1)).isoformat(),
                "$lte": (today + timedelta(days=horizon_days)).isoformat(),
            },
        }
        if not include_terminal:
            query["confirmation_status"] = {"$nin": TERMINAL_VALUES}
        cursor = self.assignments.find(query).sort([("work_date", ASCENDING), ("start_time", ASCENDING)])
        docs = await cursor.to_list(length=None)

        placements = [Placement(**doc) for doc in docs]
        zones = await self._job_timezones({p.job_id for p in placements})
        return [
            p for p in placements
            if local_to_utc(p.work_date, p.start_time, zones.get(p.job_id, self.timezone)) + ACTIVE_PLACEMENT_GRACE >= now
        ]

    async def _job_timezones(self, job_ids: Iterable[str]) -> Dict[str, str]:
        """Maps job id to its timezone override, for jobs that have one."""
        job_ids = sorted(job_ids)
        if not job_ids:
            return {}
        docs = await self.jobs.find({"id": {"$in": job_ids}}).to_list(length=None)
        return {doc["id"]: doc["timezone"] for doc in docs if doc.get("timezone")}

    async def get_active_assignment(self, associate_id: str, now: datetime) -> Optional[Placement]:
        """
        Returns the nearest upcoming non-terminal placement, or None.

        Raises:
            AmbiguousPlacementError: If more than one placement is equally plausible
        """
        candidates = await self.get_active_assignments(associate_id, now)
        return select_active_placement(candidates)

    async def update_assignment(
        self,
        job_id: str,
        associate_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Placement:
        """
        Applies fields to a placement and bumps its version.

        With expected_version, the write only lands if nobody else wrote
        in between (optimistic concurrency).

        Raises:
            ConcurrentUpdateError: If expected_version no longer matches
            NotFoundError: If the placement does not exist
        """
        query: Dict[str, Any] = {"job_id": job_id, "associate_id": associate_id}
        if expected_version is not None:
            query["version"] = expected_version

        doc = await self.assignments.find_one_and_update(
            query,
            {"$set": _to_document(fields), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        if doc:
            return Placement(**doc)

        if expected_version is not None and await self.get_assignment(job_id, associate_id):
            raise ConcurrentUpdateError(
                "Placement changed since it was read",
                details={"job_id": job_id, "associate_id": associate_id, "expected_version": expected_version}
            )
        raise NotFoundError("Placement not found", details={"job_id": job_id, "associate_id": associate_id})

    async def claim_reminder(self, job_id: str, associate_id: str, reminder_type: ReminderType, now: datetime) -> bool:
        """
        Atomically reserves one reminder class for sending.

        Succeeds only if the class is unsent, the placement is not terminal
        and no other run holds a fresh claim. A class flagged as sent but
        unconfirmed is never claimed again.
        """
        stale_before = now - self.claim_ttl
        query = {
            "job_id": job_id,
            "associate_id": associate_id,
            "confirmation_status": {"$nin": TERMINAL_VALUES},
            reminder_type.sent_field: {"$ne": True},
            reminder_type.unconfirmed_field: {"$exists": False},
            "$or": [
                {reminder_type.claim_field: {"$exists": False}},
                {reminder_type.claim_field: None},
                {reminder_type.claim_field: {"$lt": stale_before}},
            ],
        }
        doc = await self.assignments.find_one_and_update(
            query,
            {"$set": {reminder_type.claim_field: now}},
            return_document=ReturnDocument.AFTER
        )
        return doc is not None

    async def mark_reminder_sent(
        self,
        job_id: str,
        associate_id: str,
        reminder_type: ReminderType,
        now: datetime
    ) -> Optional[Placement]:
        """
        Records a confirmed send: sets the sent flag, stamps activity and drops the claim.
        """
        doc = await self.assignments.find_one_and_update(
            {"job_id": job_id, "associate_id": associate_id, reminder_type.sent_field: {"$ne": True}},
            {
                "$set": {
                    reminder_type.sent_field: True,
                    "last_activity_time": now,
                    "last_reminder_time": now,
                },
                "$unset": {reminder_type.claim_field: ""},
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER
        )
        return Placement(**doc) if doc else None

    async def flag_reminder_unconfirmed(
        self,
        job_id: str,
        associate_id: str,
        reminder_type: ReminderType,
        now: datetime
    ) -> None:
        """
        Records that the gateway accepted a reminder whose sent flag could not be written.

        Unlike a claim, the marker never goes stale.
        """
        await self.assignments.update_one(
            {"job_id": job_id, "associate_id": associate_id},
            {
                "$set": {reminder_type.unconfirmed_field: now},
                "$unset": {reminder_type.claim_field: ""},
            }
        )

    async def release_reminder_claim(self, job_id: str, associate_id: str, reminder_type: ReminderType) -> None:
        await self.assignments.update_one(
            {"job_id": job_id, "associate_id": associate_id},
            {"$unset": {reminder_type.claim_field: ""}}
        )

    # ------------------------------------------------------------------
    # Associates & jobs
    # ------------------------------------------------------------------

    async def get_associate(self, associate_id: str) -> Optional[Associate]:
        doc = await self.associates.find_one({"id": associate_id})
        return Associate(**doc) if doc else None

    async def get_associate_by_phone(self, phone: str) -> Optional[Associate]:
        doc = await self.associates.find_one({"phone_number": phone})
        return Associate(**doc) if doc else None

    async def set_opt_out(self, associate_id: str, opted_out: bool, now: Optional[datetime] = None) -> Associate:
        doc = await self.associates.find_one_and_update(
            {"id": associate_id},
            {"$set": {"opted_out": opted_out, "opted_out_at": now if opted_out else None}},
            return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("Associate not found", details={"associate_id": associate_id})
        return Associate(**doc)

    async def get_job(self, job_id: str) -> Optional[Job]:
        doc = await self.jobs.find_one({"id": job_id})
        return Job(**doc) if doc else None

    # ------------------------------------------------------------------
    # Outbound message log
    # ------------------------------------------------------------------

    async def record_outbound_message(
        self,
        sid: str,
        to: str,
        body: str,
        kind: str,
        status: Optional[str] = None,
        job_id: Optional[str] = None,
        associate_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> None:
        if self.messages is None:
            return
        try:
            await self.messages.insert_one({
                "sid": sid,
                "to": to,
                "body": body,
                "kind": kind,
                "status": status or "queued",
                "job_id": job_id,
                "associate_id": associate_id,
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            logger.warning(f"Message {sid} already logged")

    async def update_message_status(
        self,
        sid: str,
        status: str,
        error_code: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        if self.messages is None:
            return False
        result = await self.messages.update_one(
            {"sid": sid},
            {"$set": {"status": status, "error_code": error_code, "updated_at": now}}
        )
        return result.matched_count > 0


def _to_document(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Converts enum values so they are stored as plain strings."""
    doc = {}
    for key, value in fields.items():
        doc[key] = getattr(value, "value", value)
    return doc
