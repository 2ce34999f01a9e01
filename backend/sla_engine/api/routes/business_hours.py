import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.api.dependencies import CurrentUser, get_current_user, require_role
from sla_engine.database import get_db
from sla_engine.models.base import UserRole
from sla_engine.schemas.business_hours import (
    BusinessHoursResponse,
    BusinessHoursUpdate,
    HolidayCreate,
    HolidayResponse,
)
from sla_engine.services import business_hours_service

router = APIRouter()


@router.get("/{organization_id}", response_model=BusinessHoursResponse)
async def get_business_hours(
    organization_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    business_hours = await business_hours_service.get_business_hours(db, organization_id)
    if business_hours is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business hours not configured")
    return business_hours


@router.put("/{organization_id}", response_model=BusinessHoursResponse)
async def put_business_hours(
    organization_id: uuid.UUID,
    data: BusinessHoursUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Set the organization's working week. Only affects deadlines computed afterwards."""
    business_hours = await business_hours_service.upsert_business_hours(db, organization_id, data)
    await db.commit()
    return business_hours


@router.post(
    "/{organization_id}/holidays",
    response_model=HolidayResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_holiday(
    organization_id: uuid.UUID,
    data: HolidayCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    holiday = await business_hours_service.add_holiday(db, organization_id, data)
    await db.commit()
    return holiday
