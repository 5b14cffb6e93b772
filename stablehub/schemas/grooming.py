import uuid
from datetime import date
from typing import List, Optional

from pydantic import Field

from .tasks import CamelModel


class WorksheetEntryIn(CamelModel):
    horse_id: Optional[uuid.UUID] = None
    am_hours: float = Field(default=0, ge=0)
    pm_hours: float = Field(default=0, ge=0)
    whole_day_hours: float = Field(default=0, ge=0)
    woodchips_used: float = Field(default=0, ge=0)
    bichali_used: float = Field(default=0, ge=0)
    boo_sa_used: float = Field(default=0, ge=0)
    remarks: Optional[str] = None


class WorksheetCreate(CamelModel):
    groom_id: Optional[uuid.UUID] = None
    work_date: Optional[date] = Field(default=None, alias="date")
    entries: Optional[List[WorksheetEntryIn]] = None
    remarks: Optional[str] = None
