import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Enum, Float, ForeignKey, Index, Integer, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sla_engine.models.base import Base, SlaStatus, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from sla_engine.models.ticket import Ticket


class SlaInstance(TimestampMixin, Base):
    __tablename__ = "sla_instances"
    __table_args__ = (
        Index("ix_sla_instances_resolution_due_at", "resolution_due_at"),
        Index("ix_sla_instances_first_response_due_at", "first_response_due_at"),
        Index("ix_sla_instances_sla_status", "sla_status"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("sla_policies.id", ondelete="SET NULL"), nullable=True
    )
    # Budgets copied from the policy at assignment time; later policy edits don't apply.
    first_response_hours: Mapped[float] = mapped_column(Float, nullable=False)
    next_response_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    resolution_hours: Mapped[float] = mapped_column(Float, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    first_response_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    next_response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolution_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # None = undecided, True = met, False = breached
    first_response_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    next_response_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    resolution_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    sla_status: Mapped[SlaStatus] = mapped_column(
        Enum(SlaStatus, name="slastatus"), default=SlaStatus.active, nullable=False
    )
    total_paused_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="sla_instance", lazy="raise")
    pause_periods: Mapped[list["SlaPausePeriod"]] = relationship(
        "SlaPausePeriod",
        back_populates="sla_instance",
        lazy="raise",
        order_by="SlaPausePeriod.started_at",
        passive_deletes=True,
    )


class SlaPausePeriod(TimestampMixin, Base):
    __tablename__ = "sla_pause_periods"
    __table_args__ = (
        # At most one open period per instance.
        Index(
            "uq_sla_pause_periods_open",
            "sla_instance_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )

    sla_instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sla_instances.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    sla_instance: Mapped["SlaInstance"] = relationship(
        "SlaInstance", back_populates="pause_periods", lazy="raise"
    )

    @property
    def duration_seconds(self) -> int | None:
        if self.ended_at is None:
            return None
        return max(0, int((self.ended_at - self.started_at).total_seconds()))
