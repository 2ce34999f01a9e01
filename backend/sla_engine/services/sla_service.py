import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.config import settings
from sla_engine.exceptions import InstanceNotFound, PolicyNotFound
from sla_engine.models.base import SlaStatus, StatusClass
from sla_engine.models.sla_instance import SlaInstance, SlaPausePeriod
from sla_engine.models.ticket import Ticket
from sla_engine.schemas.sla_instance import PausePeriodResponse, SlaInstanceResponse, TicketSlaResponse
from sla_engine.services import business_hours_service, sla_policy_service
from sla_engine.services.business_calendar import BusinessCalendar

logger = logging.getLogger(__name__)


def compute_due(anchor: datetime, hours: float, calendar: BusinessCalendar | None = None) -> datetime:
    """Deadline ``hours`` after ``anchor``; business time when a calendar is given."""
    if calendar is None:
        return anchor + timedelta(hours=hours)
    return calendar.add_business_hours(anchor, hours)


def sla_status_for(first_response_met: bool | None, resolution_met: bool | None) -> SlaStatus:
    if resolution_met is False:
        return SlaStatus.resolution_breached
    if first_response_met is False:
        return SlaStatus.first_response_breached
    return SlaStatus.active


def uses_business_shift(instance: SlaInstance, shift_mode: str | None = None) -> bool:
    """Whether pause time is charged and re-applied as business time for this instance."""
    return instance.business_hours_only and (shift_mode or settings.sla_business_hours_pause_shift) == "business"


def elapsed_percentage(
    budget_hours: float,
    due: datetime,
    at: datetime,
    calendar: BusinessCalendar | None = None,
) -> float:
    """Share of a milestone's budget used up at ``at``. Goes past 100 once the deadline has passed."""
    budget = budget_hours * 3600
    if budget <= 0:
        return 100.0
    if calendar is None:
        remaining = (due - at).total_seconds()
    elif at <= due:
        remaining = calendar.business_seconds_between(at, due)
    else:
        remaining = -calendar.business_seconds_between(due, at)
    return round((budget - remaining) / budget * 100, 1)


async def calendar_for(
    db: AsyncSession,
    organization_id: uuid.UUID,
    business_hours_only: bool,
) -> BusinessCalendar | None:
    if not business_hours_only:
        return None
    return await business_hours_service.get_calendar(db, organization_id)


async def get_instance(db: AsyncSession, ticket_id: uuid.UUID) -> SlaInstance:
    result = await db.execute(
        select(SlaInstance)
        .where(SlaInstance.ticket_id == ticket_id)
        .execution_options(populate_existing=True)
    )
    instance = result.scalar_one_or_none()
    if instance is None:
        raise InstanceNotFound(ticket_id)
    return instance


async def get_open_pause(db: AsyncSession, instance_id: uuid.UUID) -> SlaPausePeriod | None:
    result = await db.execute(
        select(SlaPausePeriod).where(
            SlaPausePeriod.sla_instance_id == instance_id,
            SlaPausePeriod.ended_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def assign(
    db: AsyncSession,
    ticket: Ticket,
    priority_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SlaInstance:
    """Attach an SLA instance to a ticket.

    Deadlines are anchored at the ticket's creation time. Calling this again
    for the same ticket returns the existing instance unchanged.
    """
    result = await db.execute(select(SlaInstance).where(SlaInstance.ticket_id == ticket.id))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    priority_id = priority_id or ticket.priority_id
    if priority_id is None:
        raise PolicyNotFound(f"Ticket {ticket.id} has no priority", details={"ticket_id": str(ticket.id)})

    policy = await sla_policy_service.get_or_create_policy(db, ticket.organization_id, priority_id)
    calendar = await calendar_for(db, ticket.organization_id, policy.business_hours_only)
    anchor = ticket.created_at or now or datetime.now(timezone.utc)

    instance = SlaInstance(
        ticket_id=ticket.id,
        policy_id=policy.id,
        first_response_hours=policy.first_response_hours,
        next_response_hours=policy.next_response_hours,
        resolution_hours=policy.resolution_hours,
        business_hours_only=policy.business_hours_only,
        first_response_due_at=compute_due(anchor, policy.first_response_hours, calendar),
        next_response_due_at=(
            compute_due(anchor, policy.next_response_hours, calendar)
            if policy.next_response_hours
            else None
        ),
        resolution_due_at=compute_due(anchor, policy.resolution_hours, calendar),
        sla_status=SlaStatus.active,
        total_paused_seconds=0,
        escalation_level=0,
    )
    try:
        async with db.begin_nested():
            db.add(instance)
    except IntegrityError:
        # Concurrent assign for the same ticket won the unique constraint.
        result = await db.execute(select(SlaInstance).where(SlaInstance.ticket_id == ticket.id))
        existing = result.scalar_one_or_none()
        if existing is None:
            raise
        return existing

    logger.info(
        "Assigned SLA policy %s to ticket %s (resolution due %s)",
        policy.id,
        ticket.id,
        instance.resolution_due_at.isoformat(),
    )
    return instance


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


async def _decide_once(db: AsyncSession, instance: SlaInstance, flag: str, value: bool) -> bool:
    """Set a met flag only if it is still undecided. Returns True if this call decided it."""
    column = getattr(SlaInstance, flag)
    result = await db.execute(
        update(SlaInstance)
        .where(SlaInstance.id == instance.id, column.is_(None))
        .values({flag: value})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await db.refresh(instance)
        return True
    return False


async def record_first_response(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    at: datetime | None = None,
) -> SlaInstance:
    """Decide the first-response milestone from the first agent reply."""
    at = at or datetime.now(timezone.utc)
    instance = await get_instance(db, ticket_id)
    if await _decide_once(db, instance, "first_response_met", at <= instance.first_response_due_at):
        logger.info("First response for ticket %s met=%s", ticket_id, instance.first_response_met)
    return instance


async def record_agent_response(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    at: datetime | None = None,
) -> SlaInstance:
    """Record an agent reply: decides first response, then any pending next response."""
    at = at or datetime.now(timezone.utc)
    instance = await record_first_response(db, ticket_id, at)
    if instance.next_response_due_at is not None and instance.next_response_met is None:
        await _decide_once(db, instance, "next_response_met", at <= instance.next_response_due_at)
    return instance


async def reset_next_response(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    now: datetime | None = None,
) -> SlaInstance:
    """Restart the next-response clock after a customer reply."""
    now = now or datetime.now(timezone.utc)
    instance = await get_instance(db, ticket_id)
    if not instance.next_response_hours:
        return instance
    ticket = await db.get(Ticket, ticket_id)
    calendar = await calendar_for(db, ticket.organization_id, instance.business_hours_only)
    instance.next_response_due_at = compute_due(now, instance.next_response_hours, calendar)
    instance.next_response_met = None
    await db.flush()
    logger.info("Reset next response SLA for ticket %s to %s", ticket_id, instance.next_response_due_at)
    return instance


async def record_resolution(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    at: datetime | None = None,
) -> SlaInstance:
    """Freeze the resolution outcome when the ticket is resolved or closed."""
    at = at or datetime.now(timezone.utc)
    instance = await get_instance(db, ticket_id)
    if await _decide_once(db, instance, "resolution_met", at <= instance.resolution_due_at):
        logger.info("Resolution for ticket %s met=%s", ticket_id, instance.resolution_met)
    return instance


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


async def recalculate(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    now: datetime | None = None,
) -> SlaInstance:
    """Recompute deadlines from the stored budgets and clear breach flags.

    Deadlines are anchored at ticket creation plus the pause time already
    charged by closed pause periods; an open pause is charged when it ends.
    This is the only operation that turns a breached flag back to undecided.
    """
    now = now or datetime.now(timezone.utc)
    instance = await get_instance(db, ticket_id)
    ticket = await db.get(Ticket, ticket_id)
    calendar = await calendar_for(db, ticket.organization_id, instance.business_hours_only)

    paused = instance.total_paused_seconds
    anchor = ticket.created_at
    # total_paused_seconds holds whatever resume charged: business or wall-clock seconds
    business_shift = uses_business_shift(instance)

    def shifted(hours: float) -> datetime:
        due = compute_due(anchor, hours, calendar)
        if business_shift:
            return calendar.add_business_hours(due, paused / 3600)
        return due + timedelta(seconds=paused)

    if instance.first_response_met is not True:
        instance.first_response_due_at = shifted(instance.first_response_hours)
        instance.first_response_met = None
    if instance.next_response_hours and instance.next_response_met is not True:
        instance.next_response_due_at = shifted(instance.next_response_hours)
        instance.next_response_met = None
    if instance.resolution_met is not True:
        instance.resolution_due_at = shifted(instance.resolution_hours)
        instance.resolution_met = None
    instance.escalation_level = 0
    instance.last_escalated_at = None
    instance.sla_status = sla_status_for(instance.first_response_met, instance.resolution_met)
    await db.flush()
    logger.info("Recalculated SLA for ticket %s", ticket_id)
    return instance


async def list_pause_periods(db: AsyncSession, instance_id: uuid.UUID) -> list[SlaPausePeriod]:
    result = await db.execute(
        select(SlaPausePeriod)
        .where(SlaPausePeriod.sla_instance_id == instance_id)
        .order_by(SlaPausePeriod.started_at)
    )
    return list(result.scalars().all())


async def get_ticket_sla(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    now: datetime | None = None,
) -> TicketSlaResponse:
    """SLA view for a ticket.

    ``elapsed_percentage`` is the highest share of budget used by any undecided
    first-response or resolution milestone. While paused it is frozen at the
    moment the pause started.
    """
    now = now or datetime.now(timezone.utc)
    instance = await get_instance(db, ticket_id)
    periods = await list_pause_periods(db, instance.id)
    open_pause = next((p for p in periods if p.ended_at is None), None)
    at = open_pause.started_at if open_pause is not None else now

    ticket = await db.get(Ticket, ticket_id)
    calendar = await calendar_for(db, ticket.organization_id, instance.business_hours_only)
    undecided = []
    # finished tickets have no clock running
    if ticket.status_class not in (StatusClass.resolved, StatusClass.closed):
        if instance.first_response_met is None:
            undecided.append((instance.first_response_hours, instance.first_response_due_at))
        if instance.resolution_met is None:
            undecided.append((instance.resolution_hours, instance.resolution_due_at))
    elapsed =max((elapsed_percentage(hours, due, at, calendar) for hours, due in undecided), default=None)

    return TicketSlaResponse(
        ticket_id=ticket_id,
        sla_status=instance.sla_status,
        resolution_due_at=instance.resolution_due_at,
        is_paused=open_pause is not None,
        elapsed_percentage=elapsed,
        is_at_risk=elapsed is not None and elapsed >= settings.sla_at_risk_percentage,
        instance=SlaInstanceResponse.model_validate(instance),
        pause_periods=[PausePeriodResponse.model_validate(p) for p in periods],
    )
