import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class SlaPolicyUpsert(BaseModel):
    organization_id: uuid.UUID
    ticket_priority_id: uuid.UUID
    name: str = Field(min_length=1)
    description: str | None = None
    first_response_hours: float
    next_response_hours: float | None = None
    resolution_hours: float
    business_hours_only: bool = False


class SlaPolicyResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    ticket_priority_id: uuid.UUID
    name: str
    description: str | None
    first_response_hours: float
    next_response_hours: float | None
    resolution_hours: float
    business_hours_only: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
