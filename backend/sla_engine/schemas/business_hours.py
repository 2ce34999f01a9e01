import datetime
import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator

from sla_engine.services.business_calendar import parse_schedule


class HolidayCreate(BaseModel):
    date: datetime.date
    name: str | None = None
    recurring: bool = False


class HolidayResponse(HolidayCreate):
    id: uuid.UUID

    model_config = {"from_attributes": True}


class BusinessHoursUpdate(BaseModel):
    name: str = "Default"
    timezone: str = "UTC"
    weekly_schedule: dict[str, list[str] | None]

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone {v!r}")
        return v

    @field_validator("weekly_schedule")
    @classmethod
    def valid_schedule(cls, v: dict) -> dict:
        for window in v.values():
            if window is not None and len(window) != 2:
                raise ValueError("Each window must be [start, end]")
        parse_schedule(v)
        return v


class BusinessHoursResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    timezone: str
    weekly_schedule: dict
    is_default: bool
    holidays: list[HolidayResponse] = []

    model_config = {"from_attributes": True}
