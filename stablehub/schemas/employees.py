import uuid
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field

from .tasks import CamelModel


class EmployeeCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)
    designation: str
    department: Optional[str] = None
    phone_number: Optional[str] = None
    supervisor_id: Optional[uuid.UUID] = None
    employment_status: str = "Active"
    is_approved: bool = False


class SupervisorAssignment(CamelModel):
    supervisor_id: Optional[uuid.UUID] = None


class HorseCreate(CamelModel):
    name: str = Field(min_length=1)
    gender: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    breed: Optional[str] = None
    color: Optional[str] = None
    stable_number: Optional[str] = None
    supervisor_id: Optional[uuid.UUID] = None
    status: str = "Active"
