import uuid
from datetime import datetime

from pydantic import BaseModel

from sla_engine.models.base import SlaStatus


class PausePeriodResponse(BaseModel):
    started_at: datetime
    ended_at: datetime | None
    duration_seconds: int | None

    model_config = {"from_attributes": True}


class SlaInstanceResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    policy_id: uuid.UUID | None
    first_response_hours: float
    next_response_hours: float | None
    resolution_hours: float
    business_hours_only: bool
    first_response_due_at: datetime
    next_response_due_at: datetime | None
    resolution_due_at: datetime
    first_response_met: bool | None
    next_response_met: bool | None
    resolution_met: bool | None
    sla_status: SlaStatus
    total_paused_seconds: int
    escalation_level: int
    last_escalated_at: datetime | None

    model_config = {"from_attributes": True}


class TicketSlaResponse(BaseModel):
    """What the ticket views show next to a ticket."""

    ticket_id: uuid.UUID
    sla_status: SlaStatus
    resolution_due_at: datetime
    is_paused: bool
    elapsed_percentage: float | None = None
    is_at_risk: bool = False
    instance: SlaInstanceResponse
    pause_periods: list[PausePeriodResponse]
