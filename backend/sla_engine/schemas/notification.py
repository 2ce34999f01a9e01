import uuid
from datetime import datetime

from pydantic import BaseModel

from sla_engine.models.base import BreachType, EscalationSeverity


class EscalationEvent(BaseModel):
    ticket_id: uuid.UUID
    organization_id: uuid.UUID
    breach_type: BreachType
    severity: EscalationSeverity
    assignee_id: uuid.UUID | None
    escalation_level: int
    due_at: datetime
