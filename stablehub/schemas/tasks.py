import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskCreate(CamelModel):
    # Required fields are checked by the task service so that missing ones
    # are reported together
    name: Optional[str] = None
    type: Optional[str] = None
    horse_id: Optional[uuid.UUID] = None
    assigned_employee_id: Optional[uuid.UUID] = None
    scheduled_time: Optional[datetime] = None
    priority: Optional[str] = None
    required_proof: bool = False
    description: Optional[str] = None
    auto_expiry_minutes: Optional[int] = Field(default=None, ge=1)


class TaskSubmission(CamelModel):
    proof_image: Optional[str] = None
    completion_notes: Optional[str] = None


class TaskDecision(CamelModel):
    notes: Optional[str] = None


class TaskCancel(CamelModel):
    reason: Optional[str] = None


class TaskOverride(CamelModel):
    status: str
    notes: Optional[str] = None
