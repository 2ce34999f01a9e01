"""Entry points the ticketing code calls inside its own transaction.

SLA bookkeeping must never fail a ticket write: each hook runs in a savepoint
and any error rolls back only the SLA part, is logged with the ticket id, and
the hook returns None.
"""

import functools
import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import InstanceNotFound
from sla_engine.models.sla_instance import SlaInstance
from sla_engine.models.ticket import Ticket
from sla_engine.services import pause_service, sla_service

logger = logging.getLogger(__name__)


def best_effort(action: str):
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(db: AsyncSession, ticket: Ticket, *args, **kwargs):
            try:
                async with db.begin_nested():
                    return await func(db, ticket, *args, **kwargs)
            except InstanceNotFound:
                logger.warning("SLA %s skipped for ticket %s: no SLA instance", action, ticket.id)
            except Exception:
                logger.exception("SLA %s failed for ticket %s", action, ticket.id)
            return None

        return wrapper

    return decorator


@best_effort("assignment")
async def on_ticket_created(db: AsyncSession, ticket: Ticket, now: datetime | None = None) -> SlaInstance | None:
    if ticket.priority_id is None:
        logger.warning("No SLA for ticket %s yet: no priority assigned", ticket.id)
        return None
    return await sla_service.assign(db, ticket, now=now)


@best_effort("status change")
async def on_status_changed(
    db: AsyncSession,
    ticket: Ticket,
    old_status: str | None,
    new_status: str,
    now: datetime | None = None,
) -> SlaInstance | None:
    return await pause_service.on_status_change(db, ticket, old_status, new_status, now)


@best_effort("priority change")
async def on_priority_changed(
    db: AsyncSession,
    ticket: Ticket,
    new_priority_id: uuid.UUID,
    now: datetime | None = None,
) -> SlaInstance | None:
    return await pause_service.on_priority_change(db, ticket, new_priority_id, now)


@best_effort("agent response")
async def on_agent_response(db: AsyncSession, ticket: Ticket, at: datetime | None = None) -> SlaInstance | None:
    return await sla_service.record_agent_response(db, ticket.id, at)


@best_effort("customer reply")
async def on_customer_reply(db: AsyncSession, ticket: Ticket, now: datetime | None = None) -> SlaInstance | None:
    return await sla_service.reset_next_response(db, ticket.id, now)
