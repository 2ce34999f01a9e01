import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.exceptions import InvalidPolicy, PolicyNotFound
from sla_engine.models.sla_instance import SlaInstance
from sla_engine.models.sla_policy import SlaPolicy
from sla_engine.models.ticket import TicketPriority
from sla_engine.schemas.sla_policy import SlaPolicyUpsert

logger = logging.getLogger(__name__)


def validate_budgets(
    first_response_hours: float,
    resolution_hours: float,
    next_response_hours: float | None = None,
) -> None:
    """Raise InvalidPolicy unless 0 < first response <= resolution."""
    errors = []
    if resolution_hours <= 0:
        errors.append("resolution_hours must be positive")
    if first_response_hours <= 0:
        errors.append("first_response_hours must be positive")
    elif first_response_hours > resolution_hours:
        errors.append("first_response_hours must not exceed resolution_hours")
    if next_response_hours is not None and next_response_hours <= 0:
        errors.append("next_response_hours must be positive")
    if errors:
        raise InvalidPolicy("; ".join(errors), details={"errors": errors})


def synthesized_budgets(sla_hours: float) -> tuple[float, float, float]:
    """(first_response, next_response, resolution) hours derived from a priority's SLA hours."""
    resolution = float(sla_hours)
    return max(1.0, resolution / 4), max(2.0, resolution / 2), resolution


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_policy_for_priority(
    db: AsyncSession,
    organization_id: uuid.UUID,
    priority_id: uuid.UUID,
) -> SlaPolicy | None:
    result = await db.execute(
        select(SlaPolicy).where(
            SlaPolicy.organization_id == organization_id,
            SlaPolicy.ticket_priority_id == priority_id,
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_policy(
    db: AsyncSession,
    organization_id: uuid.UUID,
    priority_id: uuid.UUID,
) -> SlaPolicy:
    """Return the configured policy, or synthesize and persist one from the priority."""
    policy = await get_policy_for_priority(db, organization_id, priority_id)
    if policy is not None:
        return policy

    priority = await db.get(TicketPriority, priority_id)
    if priority is None or priority.organization_id != organization_id:
        raise PolicyNotFound(
            f"Priority {priority_id} not found",
            details={"organization_id": str(organization_id), "priority_id": str(priority_id)},
        )
    if priority.sla_hours is None or priority.sla_hours <= 0:
        raise PolicyNotFound(
            f"No SLA policy for priority {priority.name} and no default SLA hours to derive one",
            details={"organization_id": str(organization_id), "priority_id": str(priority_id)},
        )

    first, next_, resolution = synthesized_budgets(priority.sla_hours)
    policy = SlaPolicy(
        organization_id=organization_id,
        ticket_priority_id=priority_id,
        name=f"{priority.name} (default)",
        description="Derived from the priority's default SLA hours",
        first_response_hours=first,
        next_response_hours=next_,
        resolution_hours=resolution,
        business_hours_only=False,
    )
    try:
        async with db.begin_nested():
            db.add(policy)
    except IntegrityError:
        # Another transaction synthesized it first.
        existing = await get_policy_for_priority(db, organization_id, priority_id)
        if existing is None:
            raise
        return existing
    logger.info("Synthesized SLA policy for priority %s (%s)", priority.name, priority_id)
    return policy


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def list_policies(db: AsyncSession, organization_id: uuid.UUID) -> list[SlaPolicy]:
    result = await db.execute(
        select(SlaPolicy)
        .join(TicketPriority, TicketPriority.id == SlaPolicy.ticket_priority_id)
        .where(SlaPolicy.organization_id == organization_id)
        .order_by(TicketPriority.level, SlaPolicy.name)
    )
    return list(result.scalars().all())


async def get_policy(db: AsyncSession, policy_id: uuid.UUID) -> SlaPolicy:
    policy = await db.get(SlaPolicy, policy_id)
    if policy is None:
        raise PolicyNotFound(f"SLA policy {policy_id} not found")
    return policy


async def upsert_policy(db: AsyncSession, data: SlaPolicyUpsert) -> SlaPolicy:
    """Create or replace the policy for an (organization, priority) pair.

    Existing SLA instances keep the budgets they were assigned with.
    """
    validate_budgets(data.first_response_hours, data.resolution_hours, data.next_response_hours)

    priority = await db.get(TicketPriority, data.ticket_priority_id)
    if priority is None or priority.organization_id != data.organization_id:
        raise PolicyNotFound(f"Priority {data.ticket_priority_id} not found")

    policy = await get_policy_for_priority(db, data.organization_id, data.ticket_priority_id)
    if policy is None:
        policy = SlaPolicy(
            organization_id=data.organization_id,
            ticket_priority_id=data.ticket_priority_id,
        )
        db.add(policy)
    policy.name = data.name
    policy.description = data.description
    policy.first_response_hours = data.first_response_hours
    policy.next_response_hours = data.next_response_hours
    policy.resolution_hours = data.resolution_hours
    policy.business_hours_only = data.business_hours_only
    await db.flush()
    return policy


async def delete_policy(db: AsyncSession, policy_id: uuid.UUID) -> None:
    policy = await get_policy(db, policy_id)
    await db.execute(
        update(SlaInstance).where(SlaInstance.policy_id == policy_id).values(policy_id=None)
    )
    await db.delete(policy)
    await db.flush()
