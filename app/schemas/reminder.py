"""
app/schemas/reminder.py

Purpose: Reminder engine schemas

- Scheduler configuration (built from settings or an API request)
- Per-placement reminder results and the aggregate ReminderRun
- Scheduler statistics
- Inbound message routing results
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.core.exceptions import ErrorKind
from app.flow.states import ConfirmationStatus, TransitionOutcome
from app.models.placement import ReminderType
from utils.time_utils import get_zone, parse_clock_time


class ReminderConfig(BaseModel):
    """
    Recognized scheduler/dispatcher options.
    """
    enabled: bool = True
    interval_minutes: float = Field(default=15, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_minutes: float = Field(default=5, ge=0)
    night_before_time: str = "19:00"
    day_of_time: str = "07:00"
    timezone: str = "America/Denver"

    @field_validator("night_before_time", "day_of_time")
    @classmethod
    def _check_clock(cls, v: str) -> str:
        parse_clock_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def _check_zone(cls, v: str) -> str:
        get_zone(v)
        return v

    @classmethod
    def from_settings(cls) -> "ReminderConfig":
        return cls(
            enabled=settings.REMINDER_ENABLED,
            interval_minutes=settings.REMINDER_INTERVAL_MINUTES,
            max_retries=settings.REMINDER_MAX_RETRIES,
            retry_delay_minutes=settings.REMINDER_RETRY_DELAY_MINUTES,
            night_before_time=settings.REMINDER_NIGHT_BEFORE_TIME,
            day_of_time=settings.REMINDER_DAY_OF_TIME,
            timezone=settings.REMINDER_TIMEZONE
        )


class ReminderStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReminderResult(BaseModel):
    """
    Outcome of one reminder class for one placement.
    """
    job_id: str
    associate_id: str
    reminder_type: ReminderType
    status: ReminderStatus
    phone_number: Optional[str] = None
    message_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def success(self) -> bool:
        return self.status == ReminderStatus.SENT


class RunOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ReminderRun(BaseModel):
    """
    One scheduler execution's aggregate result. Logged, never persisted.
    """
    run_id: str
    trigger: str = "timer"
    started_at: datetime
    finished_at: Optional[datetime] = None
    attempts: int = 0
    outcome: RunOutcome = RunOutcome.SUCCESS
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    error: Optional[str] = None
    results: List[ReminderResult] = Field(default_factory=list)

    def record(self, results: List[ReminderResult]) -> None:
        self.results = list(results)
        self.processed = len(self.results)
        self.succeeded = sum(1 for r in self.results if r.status == ReminderStatus.SENT)
        self.failed = sum(1 for r in self.results if r.status == ReminderStatus.FAILED)
        self.skipped = sum(1 for r in self.results if r.status == ReminderStatus.SKIPPED)


class SchedulerStats(BaseModel):
    state: str
    is_active: bool
    is_running: bool
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run_time: Optional[datetime] = None
    next_run_time: Optional[datetime] = None
    last_outcome: Optional[RunOutcome] = None
    last_error: Optional[str] = None


class MessageAction(str, Enum):
    CONFIRMATION = "CONFIRMATION"
    DECLINE = "DECLINE"
    HELP = "HELP"
    OPT_OUT = "OPT_OUT"
    OPT_IN = "OPT_IN"
    UNKNOWN = "UNKNOWN"


class IncomingMessageResult(BaseModel):
    """
    Structured outcome of one inbound reply.
    """
    success: bool
    action: MessageAction
    phone_number: Optional[str] = None
    message: str = ""
    associate_id: Optional[str] = None
    job_id: Optional[str] = None
    previous_status: Optional[ConfirmationStatus] = None
    new_status: Optional[ConfirmationStatus] = None
    outcome: Optional[TransitionOutcome] = None
    response_sent: Optional[str] = None
    error: Optional[str] = None


class ReminderTestRequest(BaseModel):
    job_id: str
    associate_id: str
    reminder_type: Optional[ReminderType] = None


class IncomingMessageRequest(BaseModel):
    phone_number: str = Field(..., min_length=1)
    body: str
    to_number: Optional[str] = None


class SchedulerConfigUpdate(BaseModel):
    """
    Partial scheduler config change. Unset fields keep their current value.
    """
    enabled: Optional[bool] = None
    interval_minutes: Optional[float] = None
    max_retries: Optional[int] = None
    retry_delay_minutes: Optional[float] = None
    night_before_time: Optional[str] = None
    day_of_time: Optional[str] = None
    timezone: Optional[str] = None
