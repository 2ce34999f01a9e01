"""Minimal ticket writes that drive the SLA hooks.

Ticket CRUD belongs to the helpdesk; this module only performs the ticket
field changes the SLA engine reacts to, in the same order the helpdesk does:
write the ticket, then call the hook in the same transaction.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import TicketNotFound
from sla_engine.models.base import StatusClass
from sla_engine.models.ticket import Ticket
from sla_engine.services import sla_hooks
from sla_engine.services.pause_service import classify_status


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise TicketNotFound(f"Ticket {ticket_id} not found")
    return ticket


async def create_ticket(
    db: AsyncSession,
    organization_id: uuid.UUID,
    title: str,
    priority_id: uuid.UUID | None,
    status: str = "open",
    assignee_id: uuid.UUID | None = None,
    created_at: datetime | None = None,
) -> Ticket:
    """Create a ticket and attach its SLA."""
    now = created_at or datetime.now(timezone.utc)
    ticket = Ticket(
        organization_id=organization_id,
        title=title,
        status=status,
        status_class=classify_status(status),
        priority_id=priority_id,
        assignee_id=assignee_id,
        created_at=now,
        updated_at=now,
    )
    db.add(ticket)
    await db.flush()
    await sla_hooks.on_ticket_created(db, ticket, now=now)
    return ticket


async def update_status(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    new_status: str,
    now: datetime | None = None,
) -> Ticket:
    ticket = await get_ticket(db, ticket_id)
    now = now or datetime.now(timezone.utc)
    old_status = ticket.status
    if old_status == new_status:
        return ticket

    ticket.status = new_status
    ticket.status_class = classify_status(new_status)
    if ticket.status_class == StatusClass.resolved and ticket.resolved_at is None:
        ticket.resolved_at = now
    elif ticket.status_class == StatusClass.closed and ticket.closed_at is None:
        ticket.closed_at = now
    await db.flush()
    await sla_hooks.on_status_changed(db, ticket, old_status, new_status, now=now)
    return ticket


async def change_priority(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    priority_id: uuid.UUID,
    now: datetime | None = None,
) -> Ticket:
    ticket = await get_ticket(db, ticket_id)
    if ticket.priority_id == priority_id:
        return ticket
    ticket.priority_id = priority_id
    await db.flush()
    await sla_hooks.on_priority_changed(db, ticket, priority_id, now=now)
    return ticket


async def add_agent_reply(db: AsyncSession, ticket_id: uuid.UUID, at: datetime | None = None) -> Ticket:
    ticket = await get_ticket(db, ticket_id)
    at = at or datetime.now(timezone.utc)
    if ticket.first_response_at is None:
        ticket.first_response_at = at
        await db.flush()
    await sla_hooks.on_agent_response(db, ticket, at=at)
    return ticket


async def add_customer_reply(db: AsyncSession, ticket_id: uuid.UUID, now: datetime | None = None) -> Ticket:
    ticket = await get_ticket(db, ticket_id)
    await sla_hooks.on_customer_reply(db, ticket, now=now)
    return ticket
