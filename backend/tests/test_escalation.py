from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.models import BreachType, EscalationSeverity, SlaInstance
from sla_engine.services import breach_service, escalation_service, ticket_service
from tests.conftest import T0, load_instance


pytestmark = pytest.mark.asyncio

THRESHOLDS = [60, 240]


def _h(hours: float) -> timedelta:
    return timedelta(hours=hours)


async def _breached_ticket(session_factory, notifier, create_ticket):
    """A high-priority ticket with both milestones flagged at T0+25h (level 1)."""
    ticket = await create_ticket()
    await breach_service.scan_and_flag(session_factory, notifier, now=T0 + _h(25))
    notifier.events.clear()
    return ticket


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "level,severity",
    [(1, EscalationSeverity.breach), (2, EscalationSeverity.escalated), (3, EscalationSeverity.critical), (5, EscalationSeverity.critical)],
)
def test_severity_for_level(level, severity):
    assert escalation_service.severity_for_level(level) == severity


def test_breach_age_uses_resolution_first():
    instance = SlaInstance(
        escalation_level=1,
        first_response_met=False,
        first_response_due_at=T0 + _h(4),
        resolution_met=False,
        resolution_due_at=T0 + _h(24),
    )

    assert escalation_service.breached_milestone(instance) == (BreachType.resolution, T0 + _h(24))
    assert not escalation_service.next_level_due(instance, THRESHOLDS, T0 + _h(24) + timedelta(minutes=59))
    assert escalation_service.next_level_due(instance, THRESHOLDS, T0 + _h(25))


def test_top_level_never_due():
    instance = SlaInstance(escalation_level=3, resolution_met=False, resolution_due_at=T0)

    assert not escalation_service.next_level_due(instance, THRESHOLDS, T0 + _h(1000))


# ---------------------------------------------------------------------------
# Escalation sweep
# ---------------------------------------------------------------------------


async def test_escalates_one_level_per_threshold(session_factory, notifier, high_policy, create_ticket):
    ticket = await _breached_ticket(session_factory, notifier, create_ticket)

    early = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(24) + timedelta(minutes=59), thresholds=THRESHOLDS
    )
    assert early.updated == 0

    result = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(25), thresholds=THRESHOLDS
    )
    assert result.processed == 1
    assert result.updated == 1
    assert [(e.escalation_level, e.severity) for e in notifier.events] == [(2, EscalationSeverity.escalated)]
    assert notifier.events[0].breach_type == BreachType.resolution

    repeat = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(25), thresholds=THRESHOLDS
    )
    assert repeat.updated == 0
    assert len(notifier.events) == 1

    await escalation_service.escalate_breaches(session_factory, notifier, now=T0 + _h(28), thresholds=THRESHOLDS)
    assert [e.escalation_level for e in notifier.events] == [2, 3]
    assert notifier.events[-1].severity == EscalationSeverity.critical

    done = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(100), thresholds=THRESHOLDS
    )
    assert done.processed == 0

    instance = await load_instance(session_factory, ticket.id)
    assert instance.escalation_level == 3
    assert instance.last_escalated_at == T0 + _h(28)


async def test_catches_up_missed_levels(session_factory, notifier, high_policy, create_ticket):
    await _breached_ticket(session_factory, notifier, create_ticket)

    await escalation_service.escalate_breaches(session_factory, notifier, now=T0 + _h(30), thresholds=THRESHOLDS)

    assert [e.escalation_level for e in notifier.events] == [2, 3]


async def test_resolved_ticket_is_not_escalated(
    db: AsyncSession, session_factory, notifier, high_policy, create_ticket
):
    ticket = await _breached_ticket(session_factory, notifier, create_ticket)
    await ticket_service.update_status(db, ticket.id, "Closed", now=T0 + _h(25))
    await db.commit()

    result = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(30), thresholds=THRESHOLDS
    )

    assert result.processed == 0
    assert notifier.events == []


async def test_pages_through_candidates(session_factory, notifier, high_policy, create_ticket):
    for i in range(3):
        await create_ticket(title=f"ticket {i}")
    await breach_service.scan_and_flag(session_factory, notifier, now=T0 + _h(25))
    notifier.events.clear()

    result = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(25), thresholds=THRESHOLDS, batch_size=2
    )

    assert result.processed == 3
    assert result.updated == 3


async def test_notification_failure_keeps_level(session_factory, notifier, high_policy, create_ticket):
    ticket = await _breached_ticket(session_factory, notifier, create_ticket)
    notifier.fail = True

    result = await escalation_service.escalate_breaches(
        session_factory, notifier, now=T0 + _h(25), thresholds=THRESHOLDS
    )

    assert result.updated == 1
    assert result.errors == 1
    instance = await load_instance(session_factory, ticket.id)
    assert instance.escalation_level == 2
