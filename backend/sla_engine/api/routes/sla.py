import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.api.dependencies import CurrentUser, get_current_user, require_role
from sla_engine.database import get_db
from sla_engine.models.base import UserRole
from sla_engine.schemas.sla_instance import TicketSlaResponse
from sla_engine.services import sla_service

router = APIRouter()


@router.get("/tickets/{ticket_id}", response_model=TicketSlaResponse)
async def get_ticket_sla(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """SLA state shown alongside a ticket: status, resolution deadline, pause history."""
    return await sla_service.get_ticket_sla(db, ticket_id)


@router.post("/tickets/{ticket_id}/recalculate", response_model=TicketSlaResponse)
async def recalculate_ticket_sla(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin, UserRole.manager)),
):
    """Recompute deadlines from the stored budgets and clear breach flags."""
    await sla_service.recalculate(db, ticket_id)
    await db.commit()
    return await sla_service.get_ticket_sla(db, ticket_id)
