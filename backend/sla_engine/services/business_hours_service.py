import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sla_engine.models.business_hours import BusinessHours, Holiday
from sla_engine.schemas.business_hours import BusinessHoursUpdate, HolidayCreate
from sla_engine.services.business_calendar import DEFAULT_CALENDAR, BusinessCalendar, parse_schedule


def calendar_from_model(business_hours: BusinessHours) -> BusinessCalendar:
    """Build a calendar value from a row with holidays loaded."""
    fixed = frozenset(h.date for h in business_hours.holidays if not h.recurring)
    recurring = frozenset((h.date.month, h.date.day) for h in business_hours.holidays if h.recurring)
    return BusinessCalendar(
        timezone=business_hours.timezone,
        weekly_schedule=parse_schedule(business_hours.weekly_schedule),
        holidays=fixed,
        recurring_holidays=recurring,
    )


async def get_business_hours(db: AsyncSession, organization_id: uuid.UUID) -> BusinessHours | None:
    """The organization's default business hours, with holidays."""
    result = await db.execute(
        select(BusinessHours)
        .where(BusinessHours.organization_id == organization_id, BusinessHours.is_default == True)
        .options(selectinload(BusinessHours.holidays))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_calendar(db: AsyncSession, organization_id: uuid.UUID) -> BusinessCalendar:
    """Calendar for an organization; Mon-Fri 09:00-17:00 UTC when none is stored."""
    business_hours = await get_business_hours(db, organization_id)
    if business_hours is None:
        return DEFAULT_CALENDAR
    return calendar_from_model(business_hours)


async def upsert_business_hours(
    db: AsyncSession,
    organization_id: uuid.UUID,
    data: BusinessHoursUpdate,
) -> BusinessHours:
    business_hours = await get_business_hours(db, organization_id)
    if business_hours is None:
        business_hours = BusinessHours(organization_id=organization_id, is_default=True, holidays=[])
        db.add(business_hours)
    business_hours.name = data.name
    business_hours.timezone = data.timezone
    business_hours.weekly_schedule = data.weekly_schedule
    await db.flush()
    return await get_business_hours(db, organization_id)


async def add_holiday(
    db: AsyncSession,
    organization_id: uuid.UUID,
    data: HolidayCreate,
) -> Holiday:
    """Attach a holiday to the organization's business hours, creating defaults if needed."""
    business_hours = await get_business_hours(db, organization_id)
    if business_hours is None:
        business_hours = BusinessHours(
            organization_id=organization_id,
            is_default=True,
            holidays=[],
            weekly_schedule={str(d): [s.strftime("%H:%M"), e.strftime("%H:%M")]
                             for d, (s, e) in DEFAULT_CALENDAR.weekly_schedule.items()},
        )
        db.add(business_hours)
        await db.flush()
    holiday = Holiday(
        business_hours_id=business_hours.id,
        date=data.date,
        name=data.name,
        recurring=data.recurring,
    )
    db.add(holiday)
    await db.flush()
    return holiday
