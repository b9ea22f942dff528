"""
app/models/associate.py

Purpose: Associate document model

- Identity and canonical phone number
- Global SMS opt-out flag (STOP / START)
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Associate(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: str
    opted_out: bool = False
    opted_out_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.first_name or "there"
