"""Breach detection.

A scan selects overdue, undecided milestones and flags each one with a
conditional update that only succeeds while the flag is still NULL. The
escalation event goes out after the flag is committed, and only from the
caller whose update won, so a milestone is notified at most once no matter how
many scans overlap. If delivery then fails, the event is logged and counted;
the flag stays set.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import case, exists, literal, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import TransientStoreError
from sla_engine.models.base import BreachType, EscalationSeverity, SlaStatus, StatusClass
from sla_engine.models.sla_instance import SlaInstance, SlaPausePeriod
from sla_engine.models.ticket import Ticket
from sla_engine.schemas.notification import EscalationEvent
from sla_engine.schemas.scheduler import ScanResult
from sla_engine.services.notification_service import Notifier

logger = logging.getLogger(__name__)

CLOSED_CLASSES = (StatusClass.resolved, StatusClass.closed)


def not_paused():
    return ~exists().where(
        SlaPausePeriod.sla_instance_id == SlaInstance.id,
        SlaPausePeriod.ended_at.is_(None),
    )


def _overdue(breach_type: BreachType, now: datetime):
    due = getattr(SlaInstance, f"{breach_type.value}_due_at")
    met = getattr(SlaInstance, f"{breach_type.value}_met")
    return (due < now) & met.is_(None)


async def find_overdue(db: AsyncSession, now: datetime, batch_size: int) -> list[uuid.UUID]:
    """Ids of running instances with an overdue, undecided milestone."""
    result = await db.execute(
        select(SlaInstance.id)
        .join(Ticket, Ticket.id == SlaInstance.ticket_id)
        .where(
            or_(_overdue(BreachType.first_response, now), _overdue(BreachType.resolution, now)),
            Ticket.status_class.not_in(CLOSED_CLASSES),
            not_paused(),
        )
        .order_by(SlaInstance.resolution_due_at)
        .limit(batch_size)
    )
    return list(result.scalars().all())


async def flag_breach(
    db: AsyncSession,
    instance_id: uuid.UUID,
    breach_type: BreachType,
    now: datetime,
) -> bool:
    """Mark one milestone as breached. Returns True if this call set the flag.

    The update re-checks every selection condition, so a milestone that was
    met, paused or had its deadline pushed since the scan read it is left alone.
    """
    met_column = f"{breach_type.value}_met"
    if breach_type == BreachType.resolution:
        new_status = SlaStatus.resolution_breached
    else:
        new_status = case(
            (SlaInstance.sla_status == SlaStatus.resolution_breached, SlaInstance.sla_status),
            else_=literal(SlaStatus.first_response_breached, SlaInstance.sla_status.type),
        )
    ticket_open = exists().where(
        Ticket.id == SlaInstance.ticket_id,
        Ticket.status_class.not_in(CLOSED_CLASSES),
    )
    result = await db.execute(
        update(SlaInstance)
        .where(SlaInstance.id == instance_id, _overdue(breach_type, now), not_paused(), ticket_open)
        .values(
            {
                met_column: False,
                "sla_status": new_status,
                "escalation_level": case(
                    (SlaInstance.escalation_level < 1, 1), else_=SlaInstance.escalation_level
                ),
                "updated_at": now,
            }
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _process_instance(
    session_factory: Callable[[], AsyncSession],
    notifier: Notifier,
    instance_id: uuid.UUID,
    now: datetime,
) -> tuple[int, int]:
    """Flag one instance. Returns (flags won, notification failures)."""
    won: list[BreachType] = []
    try:
        async with session_factory() as db:
            for breach_type in (BreachType.first_response, BreachType.resolution):
                if await flag_breach(db, instance_id, breach_type, now):
                    won.append(breach_type)
            await db.commit()
            if not won:
                return 0, 0
            row = (
                await db.execute(
                    select(SlaInstance, Ticket)
                    .join(Ticket, Ticket.id == SlaInstance.ticket_id)
                    .where(SlaInstance.id == instance_id)
                    .execution_options(populate_existing=True)
                )
            ).one()
    except SQLAlchemyError as exc:
        raise TransientStoreError(
            f"Store error while flagging SLA instance {instance_id}", details={"error": str(exc)}
        ) from exc

    instance, ticket = row
    failures = 0
    for breach_type in won:
        logger.warning(
            "SLA %s breached for ticket %s (due %s)",
            breach_type.value,
            ticket.id,
            getattr(instance, f"{breach_type.value}_due_at").isoformat(),
        )
        event = EscalationEvent(
            ticket_id=ticket.id,
            organization_id=ticket.organization_id,
            breach_type=breach_type,
            severity=EscalationSeverity.breach,
            assignee_id=ticket.assignee_id,
            escalation_level=instance.escalation_level,
            due_at=getattr(instance, f"{breach_type.value}_due_at"),
        )
        try:
            await notifier.notify(event)
        except Exception:
            failures += 1
            logger.exception("Breach notification failed for ticket %s", ticket.id)
    return len(won), failures


async def scan_and_flag(
    session_factory: Callable[[], AsyncSession],
    notifier: Notifier,
    now: datetime | None = None,
    batch_size: int = 100,
) -> ScanResult:
    """Flag one batch of overdue milestones and notify for each new breach."""
    now = now or datetime.now(timezone.utc)
    result = ScanResult()
    try:
        async with session_factory() as db:
            instance_ids = await find_overdue(db, now, batch_size)
    except SQLAlchemyError:
        logger.exception("SLA breach scan could not read instances")
        result.errors += 1
        return result

    for instance_id in instance_ids:
        result.processed += 1
        try:
            flagged, failures = await _process_instance(session_factory, notifier, instance_id, now)
        except TransientStoreError as exc:
            result.errors += 1
            logger.error("%s: %s", exc.message, exc.details.get("error"))
            continue
        if flagged:
            result.updated += 1
        result.errors += failures

    if result.updated:
        logger.info("SLA breach scan flagged %d of %d instances", result.updated, result.processed)
    return result
