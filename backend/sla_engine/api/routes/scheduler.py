from fastapi import APIRouter, Depends

from sla_engine.api.dependencies import CurrentUser, get_scheduler, require_role
from sla_engine.models.base import UserRole
from sla_engine.schemas.scheduler import (
    SchedulerConfigUpdate,
    SchedulerRunRequest,
    SchedulerRunResponse,
    SchedulerStatus,
)
from sla_engine.tasks.sla_scheduler import SlaScheduler

router = APIRouter()


@router.get("", response_model=SchedulerStatus)
async def get_scheduler_status(
    scheduler: SlaScheduler = Depends(get_scheduler),
    current_user: CurrentUser = Depends(require_role(UserRole.admin, UserRole.manager)),
):
    return scheduler.get_status()


@router.patch("", response_model=SchedulerStatus)
async def update_scheduler_config(
    data: SchedulerConfigUpdate,
    scheduler: SlaScheduler = Depends(get_scheduler),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Change intervals, batch size or thresholds. Applies from the next tick. Admin only."""
    scheduler.update_config(**data.model_dump(exclude_none=True))
    return scheduler.get_status()


@router.post("/run", response_model=SchedulerRunResponse)
async def run_scheduler_checks(
    data: SchedulerRunRequest,
    scheduler: SlaScheduler = Depends(get_scheduler),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Run a status and/or escalation check now. Admin only."""
    response = SchedulerRunResponse()
    if data.check in ("status", "all"):
        response.status_check = await scheduler.trigger_status_check()
    if data.check in ("escalation", "all"):
        response.escalation_check = await scheduler.trigger_escalation_check()
    return response
