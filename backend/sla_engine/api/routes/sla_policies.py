import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.api.dependencies import CurrentUser, get_current_user, require_role
from sla_engine.database import get_db
from sla_engine.models.base import UserRole
from sla_engine.schemas.sla_policy import SlaPolicyResponse, SlaPolicyUpsert
from sla_engine.services import sla_policy_service

router = APIRouter()


@router.get("", response_model=list[SlaPolicyResponse])
async def list_sla_policies(
    organization_id: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List an organization's SLA policies, ordered by priority level."""
    return await sla_policy_service.list_policies(db, organization_id)


@router.get("/{policy_id}", response_model=SlaPolicyResponse)
async def get_sla_policy(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await sla_policy_service.get_policy(db, policy_id)


@router.put("", response_model=SlaPolicyResponse)
async def upsert_sla_policy(
    data: SlaPolicyUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin, UserRole.manager)),
):
    """Create or replace the policy for an organization/priority pair."""
    policy = await sla_policy_service.upsert_policy(db, data)
    await db.commit()
    await db.refresh(policy)
    return policy


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sla_policy(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    await sla_policy_service.delete_policy(db, policy_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
