from sla_engine.models.base import (
    Base,
    BreachType,
    EscalationSeverity,
    SlaStatus,
    StatusClass,
    TimestampMixin,
    UserRole,
)
from sla_engine.models.business_hours import BusinessHours, Holiday
from sla_engine.models.sla_instance import SlaInstance, SlaPausePeriod
from sla_engine.models.sla_policy import SlaPolicy
from sla_engine.models.ticket import Ticket, TicketPriority

__all__ = [
    "Base",
    "BreachType",
    "EscalationSeverity",
    "SlaStatus",
    "StatusClass",
    "TimestampMixin",
    "UserRole",
    "BusinessHours",
    "Holiday",
    "SlaInstance",
    "SlaPausePeriod",
    "SlaPolicy",
    "Ticket",
    "TicketPriority",
]
