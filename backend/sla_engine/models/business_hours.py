import uuid
import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sla_engine.models.base import Base, TimestampMixin


class BusinessHours(TimestampMixin, Base):
    __tablename__ = "business_hours"
    __table_args__ = (Index("ix_business_hours_organization_id", "organization_id"),)

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String, default="Default", nullable=False)
    timezone: Mapped[str] = mapped_column(String, default="UTC", nullable=False)
    # {"0": ["09:00", "17:00"], ...} keyed by weekday (Monday = 0)
    weekly_schedule: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    holidays: Mapped[list["Holiday"]] = relationship(
        "Holiday", back_populates="business_hours", lazy="raise", passive_deletes=True
    )


class Holiday(TimestampMixin, Base):
    __tablename__ = "holidays"

    business_hours_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("business_hours.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    business_hours: Mapped["BusinessHours"] = relationship(
        "BusinessHours", back_populates="holidays", lazy="raise"
    )
