from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import InstanceNotFound, PolicyNotFound
from sla_engine.models import SlaInstance, SlaStatus, Ticket
from sla_engine.schemas.sla_policy import SlaPolicyUpsert
from sla_engine.services import sla_policy_service, sla_service, ticket_service
from tests.conftest import T0, load_instance


pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def test_deadlines_anchor_at_ticket_creation(session_factory, high_policy, create_ticket):
    ticket = await create_ticket()

    instance = await load_instance(session_factory, ticket.id)
    assert instance.policy_id == high_policy.id
    assert instance.first_response_due_at == T0 + timedelta(hours=4)
    assert instance.next_response_due_at == T0 + timedelta(hours=8)
    assert instance.resolution_due_at == T0 + timedelta(hours=24)
    assert instance.resolution_due_at - ticket.created_at == timedelta(hours=instance.resolution_hours)
    assert instance.sla_status == SlaStatus.active
    assert instance.first_response_met is None
    assert instance.escalation_level == 0


async def test_assign_is_idempotent(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    first = await sla_service.assign(db, ticket)
    second = await sla_service.assign(db, ticket, now=T0 + timedelta(days=3))

    assert first.id == second.id
    assert second.resolution_due_at == T0 + timedelta(hours=24)
    count = await db.scalar(select(func.count()).select_from(SlaInstance).where(SlaInstance.ticket_id == ticket.id))
    assert count == 1


async def test_assign_synthesizes_missing_policy(session_factory, priorities, create_ticket):
    ticket = await create_ticket(priority="urgent")

    instance = await load_instance(session_factory, ticket.id)
    assert instance.resolution_hours == 8
    assert instance.first_response_hours == 2
    assert instance.resolution_due_at == T0 + timedelta(hours=8)


async def test_business_hours_policy_uses_calendar(
    db: AsyncSession, session_factory, org_id, priorities, create_ticket
):
    await sla_policy_service.upsert_policy(
        db,
        SlaPolicyUpsert(
            organization_id=org_id,
            ticket_priority_id=priorities["high"].id,
            name="High (business hours)",
            first_response_hours=4,
            resolution_hours=24,
            business_hours_only=True,
        ),
    )
    await db.commit()

    # Monday 08:00 UTC, one hour before the default 09:00-17:00 window opens.
    ticket = await create_ticket(created_at=T0)

    instance = await load_instance(session_factory, ticket.id)
    assert instance.business_hours_only is True
    assert instance.first_response_due_at == datetime(2026, 3, 2, 13, tzinfo=timezone.utc)
    assert instance.resolution_due_at == datetime(2026, 3, 4, 17, tzinfo=timezone.utc)
    assert instance.next_response_due_at is None


async def test_ticket_without_priority_is_created_without_sla(db: AsyncSession, org_id):
    ticket = await ticket_service.create_ticket(db, organization_id=org_id, title="No priority", priority_id=None)
    await db.commit()

    assert await db.get(Ticket, ticket.id) is not None
    with pytest.raises(InstanceNotFound):
        await sla_service.get_instance(db, ticket.id)


async def test_assign_without_priority_raises(db: AsyncSession, org_id):
    ticket = Ticket(organization_id=org_id, title="No priority", created_at=T0)
    db.add(ticket)
    await db.flush()

    with pytest.raises(PolicyNotFound):
        await sla_service.assign(db, ticket)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


async def test_first_response_within_deadline_is_met(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    await ticket_service.add_agent_reply(db, ticket.id, at=T0 + timedelta(hours=1))
    instance = await sla_service.get_instance(db, ticket.id)

    assert instance.first_response_met is True
    assert instance.next_response_met is True


async def test_first_response_is_decided_once(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    await sla_service.record_first_response(db, ticket.id, at=T0 + timedelta(hours=1))
    instance = await sla_service.record_first_response(db, ticket.id, at=T0 + timedelta(hours=10))

    assert instance.first_response_met is True


async def test_late_first_response_is_missed(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    instance = await sla_service.record_first_response(db, ticket.id, at=T0 + timedelta(hours=5))

    assert instance.first_response_met is False


async def test_customer_reply_restarts_next_response(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()
    await ticket_service.add_agent_reply(db, ticket.id, at=T0 + timedelta(hours=1))

    now = T0 + timedelta(hours=3)
    await ticket_service.add_customer_reply(db, ticket.id, now=now)
    instance = await sla_service.get_instance(db, ticket.id)

    assert instance.next_response_due_at == now + timedelta(hours=8)
    assert instance.next_response_met is None
    assert instance.first_response_met is True


async def test_resolution_freezes_outcome(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    await ticket_service.update_status(db, ticket.id, "Resolved", now=T0 + timedelta(hours=20))
    instance = await sla_service.get_instance(db, ticket.id)
    assert instance.resolution_met is True

    await sla_service.record_resolution(db, ticket.id, at=T0 + timedelta(hours=30))
    instance = await sla_service.get_instance(db, ticket.id)
    assert instance.resolution_met is True


async def test_ticket_view(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    view = await sla_service.get_ticket_sla(db, ticket.id)

    assert view.ticket_id == ticket.id
    assert view.sla_status == SlaStatus.active
    assert view.resolution_due_at == T0 + timedelta(hours=24)
    assert view.is_paused is False
    assert view.pause_periods == []


# ---------------------------------------------------------------------------
# First priority after creation
# ---------------------------------------------------------------------------


async def test_first_priority_assigns_sla_from_creation(
    db: AsyncSession, session_factory, org_id, priorities, high_policy
):
    ticket = await ticket_service.create_ticket(db, org_id, "Untriaged", priority_id=None, created_at=T0)
    await db.commit()
    with pytest.raises(InstanceNotFound):
        await sla_service.get_instance(db, ticket.id)

    await ticket_service.change_priority(db, ticket.id, priorities["high"].id, now=T0 + timedelta(hours=2))
    await db.commit()

    instance = await load_instance(session_factory, ticket.id)
    assert instance.policy_id == high_policy.id
    assert instance.first_response_due_at == T0 + timedelta(hours=4)
    assert instance.resolution_due_at == T0 + timedelta(hours=24)
    assert instance.total_paused_seconds == 0


async def test_first_priority_on_pending_ticket_starts_paused(db: AsyncSession, org_id, priorities, high_policy):
    ticket = await ticket_service.create_ticket(
        db, org_id, "Waiting on customer", priority_id=None, status="Pending", created_at=T0
    )
    await db.commit()

    await ticket_service.change_priority(db, ticket.id, priorities["high"].id, now=T0 + timedelta(hours=2))
    await db.commit()

    view = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=3))
    assert view.is_paused is True
    assert view.pause_periods[0].started_at == T0 + timedelta(hours=2)


# ---------------------------------------------------------------------------
# At-risk signal
# ---------------------------------------------------------------------------


async def test_elapsed_share_tracks_nearest_milestone(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()

    early = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=1))
    assert early.elapsed_percentage == 25.0
    assert early.is_at_risk is False

    # 3.5h into a 4h first-response budget
    late = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=3, minutes=30))
    assert late.elapsed_percentage == 87.5
    assert late.is_at_risk is True
    assert late.sla_status == SlaStatus.active


async def test_elapsed_share_moves_to_resolution_after_reply(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()
    await ticket_service.add_agent_reply(db, ticket.id, at=T0 + timedelta(hours=1))

    midway = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=12))
    assert midway.elapsed_percentage == 50.0
    assert midway.is_at_risk is False

    nearly = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=20))
    assert nearly.elapsed_percentage == 83.3
    assert nearly.is_at_risk is True


async def test_elapsed_share_freezes_while_paused(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()
    await ticket_service.update_status(db, ticket.id, "Pending", now=T0 + timedelta(hours=1))

    view = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=10))

    assert view.elapsed_percentage == 25.0
    assert view.is_at_risk is False


async def test_resolved_ticket_is_never_at_risk(db: AsyncSession, high_policy, create_ticket):
    ticket = await create_ticket()
    await ticket_service.update_status(db, ticket.id, "Resolved", now=T0 + timedelta(hours=2))

    view = await sla_service.get_ticket_sla(db, ticket.id, now=T0 + timedelta(hours=30))

    assert view.elapsed_percentage is None
    assert view.is_at_risk is False
