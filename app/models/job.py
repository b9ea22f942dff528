"""
app/models/job.py

Purpose: Job document model

- Context for reminder text (title, customer, location)
- Optional per-job reminder times and timezone overriding the defaults
"""

from typing import Optional

from pydantic import BaseModel


class Job(BaseModel):
    id: str
    title: str
    customer_name: Optional[str] = None
    location: Optional[str] = None
    night_before_time: Optional[str] = None
    day_of_time: Optional[str] = None
    timezone: Optional[str] = None
