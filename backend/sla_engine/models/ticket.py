import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, Float, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sla_engine.models.base import Base, StatusClass, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from sla_engine.models.sla_instance import SlaInstance


class TicketPriority(TimestampMixin, Base):
    __tablename__ = "ticket_priorities"
    __table_args__ = (Index("ix_ticket_priorities_organization_id", "organization_id"),)

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    sla_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_organization_id", "organization_id"),
        Index("ix_tickets_status_class", "status_class"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="open", nullable=False)
    status_class: Mapped[StatusClass] = mapped_column(
        Enum(StatusClass, name="statusclass"), default=StatusClass.open, nullable=False
    )
    priority_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("ticket_priorities.id"), nullable=True
    )
    assignee_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    priority: Mapped[Optional["TicketPriority"]] = relationship("TicketPriority", lazy="raise")
    sla_instance: Mapped[Optional["SlaInstance"]] = relationship(
        "SlaInstance", back_populates="ticket", lazy="raise", passive_deletes=True
    )
