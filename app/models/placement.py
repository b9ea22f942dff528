"""
app/models/placement.py

Purpose: Placement (job assignment) document model

- One associate scheduled for one job occurrence
- Confirmation status and per-class reminder flags
- Activity timestamps and optimistic-concurrency version
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from app.flow.states import ConfirmationStatus, is_terminal, parse_status


class ReminderType(str, Enum):
    """
    Reminder classes. Each is sent at most once per placement.
    """
    NIGHT_BEFORE = "night_before"
    DAY_OF = "day_of"

    @property
    def sent_field(self) -> str:
        return f"{self.value}_sent"

    @property
    def claim_field(self) -> str:
        return f"reminder_claims.{self.value}"

    @property
    def unconfirmed_field(self) -> str:
        return f"reminder_unconfirmed.{self.value}"


class Placement(BaseModel):
    """
    Placement document as stored in the assignments collection.
    """
    job_id: str
    associate_id: str
    work_date: date
    start_time: str = Field(..., description="Local shift start, HH:MM")
    confirmation_status: ConfirmationStatus = ConfirmationStatus.UNCONFIRMED
    night_before_sent: bool = False
    day_of_sent: bool = False
    reminder_claims: Dict[str, datetime] = Field(default_factory=dict)
    reminder_unconfirmed: Dict[str, datetime] = Field(
        default_factory=dict,
        description="Classes the gateway accepted but whose sent flag could not be written"
    )
    last_activity_time: Optional[datetime] = None
    last_confirmation_time: Optional[datetime] = None
    last_reminder_time: Optional[datetime] = None
    version: int = 0

    @field_validator("confirmation_status", mode="before")
    @classmethod
    def _coerce_status(cls, v):
        return parse_status(v)

    @field_validator("work_date", mode="before")
    @classmethod
    def _coerce_work_date(cls, v):
        if isinstance(v, datetime):
            return v.date()
        return v

    @property
    def key(self) -> str:
        return f"{self.job_id}:{self.associate_id}"

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.confirmation_status)

    def reminder_sent(self, reminder_type: ReminderType) -> bool:
        return bool(getattr(self, reminder_type.sent_field)) or reminder_type.value in self.reminder_unconfirmed

    @property
    def all_reminders_sent(self) -> bool:
        return all(self.reminder_sent(rt) for rt in ReminderType)

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "job-42",
                "associate_id": "assoc-7",
                "work_date": "2025-08-05",
                "start_time": "09:00",
                "confirmation_status": "UNCONFIRMED",
                "night_before_sent": False,
                "day_of_sent": False,
                "version": 0
            }
        }
