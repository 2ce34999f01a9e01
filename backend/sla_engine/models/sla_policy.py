import uuid
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from sla_engine.models.base import Base, TimestampMixin


class SlaPolicy(TimestampMixin, Base):
    __tablename__ = "sla_policies"
    __table_args__ = (
        UniqueConstraint("organization_id", "ticket_priority_id", name="uq_sla_policies_org_priority"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    ticket_priority_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ticket_priorities.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_response_hours: Mapped[float] = mapped_column(Float, nullable=False)
    next_response_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    resolution_hours: Mapped[float] = mapped_column(Float, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
