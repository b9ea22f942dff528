"""Shared test fixtures and configuration.

Sets safe environment variables before app imports and provides
in-memory stand-ins for the Mongo-backed store and the Twilio gateway.
"""

import os

# Patch env vars BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_FROM_NUMBER", "+17205550199")
os.environ.setdefault("REMINDER_TIMEZONE", "America/Denver")
os.environ.setdefault("TWILIO_VALIDATE_SIGNATURE", "false")

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from app.core.exceptions import ConcurrentUpdateError, NotFoundError
from app.models.associate import Associate
from app.models.job import Job
from app.models.placement import Placement, ReminderType
from app.schemas.reminder import ReminderConfig
from app.services.assignment_store import ACTIVE_PLACEMENT_GRACE, select_active_placement
from app.services.twilio_service import SendReceipt
from utils.time_utils import local_date, local_to_utc


DENVER = "America/Denver"


class FrozenClock:
    """Callable clock the tests can move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeAssignmentStore:
    """In-memory store with the same conditional-update rules as MongoAssignmentStore."""

    def __init__(self, timezone_name: str = DENVER, claim_ttl_seconds: int = 300, horizon_days: int = 7):
        self.timezone = timezone_name
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.horizon_days = horizon_days
        self.placements: Dict[Tuple[str, str], Placement] = {}
        self.associates: Dict[str, Associate] = {}
        self.jobs: Dict[str, Job] = {}
        self.messages: Dict[str, dict] = {}
        self.due_error: Optional[Exception] = None
        self.update_calls = 0

    # seeding helpers

    def add_associate(self, id: str, phone_number: str, first_name: str = "Sam", opted_out: bool = False) -> Associate:
        associate = Associate(id=id, first_name=first_name, phone_number=phone_number, opted_out=opted_out)
        self.associates[id] = associate
        return associate

    def add_job(self, id: str, title: str = "Forklift Operator", customer_name: str = "Acme Logistics", **kwargs) -> Job:
        job = Job(id=id, title=title, customer_name=customer_name, **kwargs)
        self.jobs[id] = job
        return job

    def add_placement(self, job_id: str, associate_id: str, work_date: date, start_time: str = "09:00", **kwargs) -> Placement:
        placement = Placement(job_id=job_id, associate_id=associate_id, work_date=work_date, start_time=start_time, **kwargs)
        self.placements[(job_id, associate_id)] = placement
        return placement

    def placement(self, job_id: str, associate_id: str) -> Placement:
        return self.placements[(job_id, associate_id)]

    # store interface

    async def get_due_assignments(self, now: datetime) -> List[Placement]:
        if self.due_error is not None:
            raise self.due_error
        return [
            p.model_copy(deep=True) for p in self.placements.values()
            if not p.is_terminal and not p.all_reminders_sent
        ]

    async def get_assignment(self, job_id: str, associate_id: str) -> Optional[Placement]:
        placement = self.placements.get((job_id, associate_id))
        return placement.model_copy(deep=True) if placement else None

    async def get_active_assignments(self, associate_id, now, horizon_days=None, include_terminal=False):
        horizon_days = horizon_days if horizon_days is not None else self.horizon_days
        today = local_date(now, self.timezone)
        found = []
        for p in self.placements.values():
            if p.associate_id != associate_id:
                continue
            if p.is_terminal and not include_terminal:
                continue
            if not (today - timedelta(days=1) <= p.work_date <= today + timedelta(days=horizon_days)):
                continue
            job = self.jobs.get(p.job_id)
            tz_name = (job.timezone if job else None) or self.timezone
            if local_to_utc(p.work_date, p.start_time, tz_name) + ACTIVE_PLACEMENT_GRACE < now:
                continue
            found.append(p.model_copy(deep=True))
        return found

    async def get_active_assignment(self, associate_id, now):
        return select_active_placement(await self.get_active_assignments(associate_id, now))

    async def update_assignment(self, job_id, associate_id, fields, expected_version=None):
        self.update_calls += 1
        placement = self.placements.get((job_id, associate_id))
        if placement is None:
            raise NotFoundError("Placement not found")
        if expected_version is not None and placement.version != expected_version:
            raise ConcurrentUpdateError("Placement changed since it was read")
        updated = placement.model_copy(update={**fields, "version": placement.version + 1})
        self.placements[(job_id, associate_id)] = updated
        return updated.model_copy(deep=True)

    async def claim_reminder(self, job_id, associate_id, reminder_type: ReminderType, now) -> bool:
        placement = self.placements.get((job_id, associate_id))
        if placement is None or placement.is_terminal or placement.reminder_sent(reminder_type):
            return False
        claimed_at = placement.reminder_claims.get(reminder_type.value)
        if claimed_at is not None and claimed_at >= now - self.claim_ttl:
            return False
        placement.reminder_claims[reminder_type.value] = now
        return True

    async def mark_reminder_sent(self, job_id, associate_id, reminder_type: ReminderType, now):
        placement = self.placements.get((job_id, associate_id))
        if placement is None or getattr(placement, reminder_type.sent_field):
            return None
        claims = dict(placement.reminder_claims)
        claims.pop(reminder_type.value, None)
        updated = placement.model_copy(update={
            reminder_type.sent_field: True,
            "last_activity_time": now,
            "last_reminder_time": now,
            "reminder_claims": claims,
            "version": placement.version + 1,
        })
        self.placements[(job_id, associate_id)] = updated
        return updated.model_copy(deep=True)

    async def flag_reminder_unconfirmed(self, job_id, associate_id, reminder_type: ReminderType, now) -> None:
        placement = self.placements.get((job_id, associate_id))
        if placement is not None:
            placement.reminder_unconfirmed[reminder_type.value] = now
            placement.reminder_claims.pop(reminder_type.value, None)

    async def release_reminder_claim(self, job_id, associate_id, reminder_type: ReminderType) -> None:
        placement = self.placements.get((job_id, associate_id))
        if placement is not None:
            placement.reminder_claims.pop(reminder_type.value, None)

    async def get_associate(self, associate_id):
        associate = self.associates.get(associate_id)
        return associate.model_copy() if associate else None

    async def get_associate_by_phone(self, phone):
        for associate in self.associates.values():
            if associate.phone_number == phone:
                return associate.model_copy()
        return None

    async def set_opt_out(self, associate_id, opted_out, now=None):
        associate = self.associates.get(associate_id)
        if associate is None:
            raise NotFoundError("Associate not found")
        updated = associate.model_copy(update={"opted_out": opted_out, "opted_out_at": now if opted_out else None})
        self.associates[associate_id] = updated
        return updated.model_copy()

    async def get_job(self, job_id):
        return self.jobs.get(job_id)

    async def record_outbound_message(self, sid, to, body, kind, status=None, job_id=None, associate_id=None, now=None):
        self.messages[sid] = {
            "sid": sid, "to": to, "body": body, "kind": kind, "status": status or "queued",
            "job_id": job_id, "associate_id": associate_id,
        }

    async def update_message_status(self, sid, status, error_code=None, now=None):
        if sid not in self.messages:
            return False
        self.messages[sid].update(status=status, error_code=error_code)
        return True


@dataclass
class SentMessage:
    to: str
    body: str
    from_: Optional[str] = None


class FakeGateway:
    """Records sends; failures can be scripted per recipient."""

    def __init__(self):
        self.sent: List[SentMessage] = []
        self.failures: Dict[str, Exception] = {}

    async def send_with_retry(self, to, body, from_=None) -> SendReceipt:
        if to in self.failures:
            raise self.failures[to]
        self.sent.append(SentMessage(to=to, body=body, from_=from_))
        return SendReceipt(id=f"SM{len(self.sent):04d}", status="queued")

    async def send(self, to, body, from_=None) -> SendReceipt:
        return await self.send_with_retry(to, body, from_=from_)

    def is_configured(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    def sent_to(self, phone: str) -> List[SentMessage]:
        return [m for m in self.sent if m.to == phone]


@pytest.fixture
def store():
    return FakeAssignmentStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def reminder_config():
    return ReminderConfig(
        enabled=True,
        interval_minutes=15,
        max_retries=3,
        retry_delay_minutes=5,
        night_before_time="19:00",
        day_of_time="07:00",
        timezone=DENVER
    )


@pytest.fixture
def clock():
    # 2025-08-04 14:00 MDT
    return FrozenClock(datetime(2025, 8, 4, 20, 0, tzinfo=timezone.utc))


@pytest.fixture
def seeded_store(store):
    """One associate with one 09:00 shift on 2025-08-05 (Denver)."""
    store.add_associate("assoc-1", "+13035550100", first_name="Maria")
    store.add_job("job-1")
    store.add_placement("job-1", "assoc-1", date(2025, 8, 5), "09:00")
    return store
