import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.models.base import BreachType, EscalationSeverity
from sla_engine.models.sla_instance import SlaInstance
from sla_engine.models.ticket import Ticket
from sla_engine.schemas.notification import EscalationEvent
from sla_engine.schemas.scheduler import ScanResult
from sla_engine.services.breach_service import CLOSED_CLASSES, not_paused
from sla_engine.services.notification_service import Notifier

logger = logging.getLogger(__name__)


def severity_for_level(level: int) -> EscalationSeverity:
    if level <= 1:
        return EscalationSeverity.breach
    if level == 2:
        return EscalationSeverity.escalated
    return EscalationSeverity.critical


def breached_milestone(instance: SlaInstance) -> tuple[BreachType, datetime] | None:
    """The milestone that drives escalation timing; resolution wins over first response."""
    if instance.resolution_met is False:
        return BreachType.resolution, instance.resolution_due_at
    if instance.first_response_met is False:
        return BreachType.first_response, instance.first_response_due_at
    return None


def next_level_due(instance: SlaInstance, thresholds: Sequence[int], now: datetime) -> bool:
    """Whether the breach is old enough to move past the current level."""
    level = instance.escalation_level
    if level < 1 or level > len(thresholds):
        return False
    milestone = breached_milestone(instance)
    if milestone is None:
        return False
    return now - milestone[1] >= timedelta(minutes=thresholds[level - 1])


async def find_escalation_candidates(
    db: AsyncSession,
    thresholds: Sequence[int],
    batch_size: int,
    after: uuid.UUID | None = None,
) -> list[uuid.UUID]:
    query = (
        select(SlaInstance.id)
        .join(Ticket, Ticket.id == SlaInstance.ticket_id)
        .where(
            SlaInstance.escalation_level >= 1,
            SlaInstance.escalation_level <= len(thresholds),
            or_(SlaInstance.first_response_met.is_(False), SlaInstance.resolution_met.is_(False)),
            Ticket.status_class.not_in(CLOSED_CLASSES),
            not_paused(),
        )
        .order_by(SlaInstance.id)
        .limit(batch_size)
    )
    if after is not None:
        query = query.where(SlaInstance.id > after)
    result = await db.execute(query)
    return list(result.scalars().all())


async def escalate_instance(
    session_factory: Callable[[], AsyncSession],
    notifier: Notifier,
    instance_id: uuid.UUID,
    thresholds: Sequence[int],
    now: datetime,
) -> tuple[int, int]:
    """Raise one instance through every level it has aged into.

    Returns (levels raised, notification failures).
    """
    raised = failures = 0
    while True:
        async with session_factory() as db:
            row = (
                await db.execute(
                    select(SlaInstance, Ticket)
                    .join(Ticket, Ticket.id == SlaInstance.ticket_id)
                    .where(SlaInstance.id == instance_id)
                    .execution_options(populate_existing=True)
                )
            ).one_or_none()
            if row is None:
                return raised, failures
            instance, ticket = row
            if ticket.status_class in CLOSED_CLASSES or not next_level_due(instance, thresholds, now):
                return raised, failures

            level = instance.escalation_level
            result = await db.execute(
                update(SlaInstance)
                .where(SlaInstance.id == instance_id, SlaInstance.escalation_level == level)
                .values(escalation_level=level + 1, last_escalated_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount != 1:
                # Someone else moved the level; re-read and try again.
                continue

        raised += 1
        breach_type, due_at = breached_milestone(instance)
        event = EscalationEvent(
            ticket_id=ticket.id,
            organization_id=ticket.organization_id,
            breach_type=breach_type,
            severity=severity_for_level(level + 1),
            assignee_id=ticket.assignee_id,
            escalation_level=level + 1,
            due_at=due_at,
        )
        logger.warning(
            "Escalated ticket %s to level %d (%s breached at %s)",
            ticket.id,
            level + 1,
            breach_type.value,
            due_at.isoformat(),
        )
        try:
            await notifier.notify(event)
        except Exception:
            failures += 1
            logger.exception("Escalation notification failed for ticket %s", ticket.id)


async def escalate_breaches(
    session_factory: Callable[[], AsyncSession],
    notifier: Notifier,
    now: datetime | None = None,
    thresholds: Sequence[int] = (60, 240),
    batch_size: int = 100,
) -> ScanResult:
    """Walk breached, still-open instances up the escalation ladder.

    Candidates are read in pages of ``batch_size`` ordered by id, so instances
    that are not yet old enough for their next level don't hide later ones.
    """
    now = now or datetime.now(timezone.utc)
    result = ScanResult()
    if not thresholds:
        return result
    after = None
    while True:
        try:
            async with session_factory() as db:
                instance_ids = await find_escalation_candidates(db, thresholds, batch_size, after)
        except SQLAlchemyError:
            logger.exception("SLA escalation check could not read instances")
            result.errors += 1
            return result

        for instance_id in instance_ids:
            result.processed += 1
            try:
                raised, failures = await escalate_instance(session_factory, notifier, instance_id, thresholds, now)
            except SQLAlchemyError:
                result.errors += 1
                logger.exception("SLA escalation failed for instance %s", instance_id)
                continue
            if raised:
                result.updated += 1
            result.errors += failures

        if len(instance_ids) < batch_size:
            break
        after = instance_ids[-1]

    if result.updated:
        logger.info("SLA escalation check raised %d of %d instances", result.updated, result.processed)
    return result
