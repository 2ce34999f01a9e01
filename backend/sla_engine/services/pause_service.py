"""SLA clock pause/resume driven by ticket status changes.

An instance is PAUSED while it has a pause period with no ``ended_at``. The
partial unique index on open periods is what stops two concurrent callers from
pausing twice; closing a period is a conditional update on ``ended_at IS
NULL`` so only one caller ever charges a given pause to the deadlines.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import InstanceNotFound
from sla_engine.models.base import StatusClass
from sla_engine.models.sla_instance import SlaInstance, SlaPausePeriod
from sla_engine.models.ticket import Ticket
from sla_engine.schemas.scheduler import ScanResult
from sla_engine.services import sla_policy_service, sla_service

logger = logging.getLogger(__name__)

PENDING_STATUS_KEYWORDS = (
    "pending",
    "awaiting",
    "waiting",
    "on hold",
    "customer response",
    "client response",
    "suspended",
    "deferred",
)

OPEN_STATUS_NAMES = ("open", "new")

MILESTONES = ("first_response", "next_response", "resolution")


def classify_status(name: str | None) -> StatusClass:
    """Map a free-form status name to its status class."""
    normalized = (name or "").lower().replace("_", " ").replace("-", " ").strip()
    if "closed" in normalized:
        return StatusClass.closed
    if "resolved" in normalized:
        return StatusClass.resolved
    if any(keyword in normalized for keyword in PENDING_STATUS_KEYWORDS):
        return StatusClass.pending
    if normalized in OPEN_STATUS_NAMES:
        return StatusClass.open
    return StatusClass.active


# ---------------------------------------------------------------------------
# Pause / resume primitives
# ---------------------------------------------------------------------------


async def pause(db: AsyncSession, instance: SlaInstance, now: datetime) -> SlaPausePeriod | None:
    """Open a pause period. Returns None if the instance is already paused."""
    if await sla_service.get_open_pause(db, instance.id) is not None:
        return None
    period = SlaPausePeriod(sla_instance_id=instance.id, started_at=now)
    try:
        async with db.begin_nested():
            db.add(period)
    except IntegrityError:
        logger.info("SLA for ticket %s already paused", instance.ticket_id)
        return None
    logger.info("Paused SLA for ticket %s at %s", instance.ticket_id, now.isoformat())
    return period


async def resume(
    db: AsyncSession,
    instance: SlaInstance,
    organization_id: uuid.UUID,
    now: datetime,
    shift_mode: str | None = None,
) -> float | None:
    """Close the open pause period and push unmet deadlines out by its length.

    Returns the seconds charged, or None if the instance wasn't paused or
    another caller closed the period first.
    """
    period = await sla_service.get_open_pause(db, instance.id)
    if period is None:
        return None
    ended_at = max(now, period.started_at)
    result = await db.execute(
        update(SlaPausePeriod)
        .where(SlaPausePeriod.id == period.id, SlaPausePeriod.ended_at.is_(None))
        .values(ended_at=ended_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    await db.refresh(period)

    calendar = None
    if sla_service.uses_business_shift(instance, shift_mode):
        calendar = await sla_service.calendar_for(db, organization_id, True)
        charged = calendar.business_seconds_between(period.started_at, ended_at)
    else:
        charged = (ended_at - period.started_at).total_seconds()

    for milestone in MILESTONES:
        due_attr = f"{milestone}_due_at"
        due = getattr(instance, due_attr)
        if due is None or getattr(instance, f"{milestone}_met") is True:
            continue
        if calendar is None:
            setattr(instance, due_attr, due + timedelta(seconds=charged))
        else:
            setattr(instance, due_attr, calendar.add_business_hours(due, charged / 3600))
    instance.total_paused_seconds = instance.total_paused_seconds + int(round(charged))
    await db.flush()
    logger.info(
        "Resumed SLA for ticket %s after %ds paused (resolution due %s)",
        instance.ticket_id,
        int(charged),
        instance.resolution_due_at.isoformat(),
    )
    return charged


# ---------------------------------------------------------------------------
# Ticket events
# ---------------------------------------------------------------------------


async def on_status_change(
    db: AsyncSession,
    ticket: Ticket,
    old_status: str | None,
    new_status: str,
    now: datetime | None = None,
) -> SlaInstance | None:
    """Apply a ticket status transition to the SLA clock."""
    if old_status == new_status:
        return None
    now = now or datetime.now(timezone.utc)
    new_class = classify_status(new_status)
    instance = await sla_service.get_instance(db, ticket.id)

    if new_class == StatusClass.pending:
        await pause(db, instance, now)
        return instance

    await resume(db, instance, ticket.organization_id, now)
    if new_class in (StatusClass.resolved, StatusClass.closed):
        await sla_service.record_resolution(db, ticket.id, now)
    return instance


async def on_priority_change(
    db: AsyncSession,
    ticket: Ticket,
    new_priority_id: uuid.UUID,
    now: datetime | None = None,
) -> SlaInstance:
    """Move the instance to the new priority's policy.

    Undecided deadlines are re-anchored at ``now``. A pause in progress is
    split at ``now`` so the time already served isn't charged to the new
    deadlines.

    A ticket created without a priority has no instance yet; its first
    priority assigns one, anchored at ticket creation like any other.
    """
    now = now or datetime.now(timezone.utc)
    try:
        instance = await sla_service.get_instance(db, ticket.id)
    except InstanceNotFound:
        instance = await sla_service.assign(db, ticket, new_priority_id, now=now)
        if ticket.status_class == StatusClass.pending:
            await pause(db, instance, now)
        return instance
    policy = await sla_policy_service.get_or_create_policy(db, ticket.organization_id, new_priority_id)

    was_paused = await resume(db, instance, ticket.organization_id, now) is not None
    calendar = await sla_service.calendar_for(db, ticket.organization_id, policy.business_hours_only)

    instance.policy_id = policy.id
    instance.first_response_hours = policy.first_response_hours
    instance.next_response_hours = policy.next_response_hours
    instance.resolution_hours = policy.resolution_hours
    instance.business_hours_only = policy.business_hours_only
    if instance.first_response_met is None:
        instance.first_response_due_at = sla_service.compute_due(now, policy.first_response_hours, calendar)
    if instance.next_response_met is None:
        instance.next_response_due_at = (
            sla_service.compute_due(now, policy.next_response_hours, calendar)
            if policy.next_response_hours
            else None
        )
    if instance.resolution_met is None:
        instance.resolution_due_at = sla_service.compute_due(now, policy.resolution_hours, calendar)
    await db.flush()

    if was_paused:
        await pause(db, instance, now)
    logger.info("Re-anchored SLA for ticket %s on policy %s", ticket.id, policy.id)
    return instance


# ---------------------------------------------------------------------------
# Background reconciliation
# ---------------------------------------------------------------------------


def _open_pause_exists():
    return exists().where(
        SlaPausePeriod.sla_instance_id == SlaInstance.id,
        SlaPausePeriod.ended_at.is_(None),
    )


async def _reconcile_rows(
    session_factory: Callable[[], AsyncSession],
    query,
    action,
    label: str,
) -> ScanResult:
    result = ScanResult()
    async with session_factory() as db:
        rows = (await db.execute(query)).all()
    for instance_id, ticket_id in rows:
        result.processed += 1
        try:
            async with session_factory() as db:
                instance = await db.get(SlaInstance, instance_id)
                ticket = await db.get(Ticket, ticket_id)
                if instance is None or ticket is None:
                    continue
                if await action(db, instance, ticket):
                    result.updated += 1
                await db.commit()
        except Exception:
            result.errors += 1
            logger.exception("SLA %s reconciliation failed for ticket %s", label, ticket_id)
    return result


async def reconcile_pause_states(
    session_factory: Callable[[], AsyncSession],
    now: datetime | None = None,
    batch_size: int = 100,
) -> ScanResult:
    """Repair instances whose foreground pause/resume/resolution event was missed."""
    now = now or datetime.now(timezone.utc)
    base = select(SlaInstance.id, SlaInstance.ticket_id).join(Ticket, Ticket.id == SlaInstance.ticket_id)

    async def _pause(db, instance, ticket):
        return await pause(db, instance, now) is not None

    async def _resume(db, instance, ticket):
        return await resume(db, instance, ticket.organization_id, now) is not None

    async def _resolve(db, instance, ticket):
        at = ticket.resolved_at or ticket.closed_at or now
        instance = await sla_service.record_resolution(db, ticket.id, at)
        return instance.resolution_met is not None

    total = await _reconcile_rows(
        session_factory,
        base.where(Ticket.status_class == StatusClass.pending, ~_open_pause_exists()).limit(batch_size),
        _pause,
        "pause",
    )
    total += await _reconcile_rows(
        session_factory,
        base.where(Ticket.status_class != StatusClass.pending, _open_pause_exists()).limit(batch_size),
        _resume,
        "resume",
    )
    total += await _reconcile_rows(
        session_factory,
        base.where(
            and_(
                Ticket.status_class.in_([StatusClass.resolved, StatusClass.closed]),
                SlaInstance.resolution_met.is_(None),
            )
        ).limit(batch_size),
        _resolve,
        "resolution",
    )
    if total.updated:
        logger.info("SLA pause reconciliation repaired %d instances", total.updated)
    return total
