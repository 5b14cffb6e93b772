import uuid
from datetime import date
from typing import Optional

from pydantic import Field

from .tasks import CamelModel


class AttendanceCreate(CamelModel):
    employee_id: Optional[uuid.UUID] = None
    work_date: Optional[date] = Field(default=None, alias="date")
    # Ignored on Mondays, which are always recorded as WOFF
    status: Optional[str] = None
    remarks: Optional[str] = None
