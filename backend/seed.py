"""Seed default priorities, SLA policies and business hours for an organization.

Run with: python seed.py --organization-id <uuid>
"""
import argparse
import asyncio
import uuid

from sqlalchemy import select

from sla_engine.config import settings
from sla_engine.database import async_session
from sla_engine.models import BusinessHours, SlaPolicy, TicketPriority
from sla_engine.services.auth_service import create_access_token

# (name, level, first response hours, resolution hours)
PRIORITY_DEFAULTS = [
    ("low", 0, 24, settings.sla_low_hours),
    ("medium", 1, 12, settings.sla_medium_hours),
    ("high", 2, 4, settings.sla_high_hours),
    ("urgent", 3, 1, settings.sla_urgent_hours),
]

DEFAULT_WEEKLY_SCHEDULE = {str(day): ["09:00", "17:00"] for day in range(5)}


async def seed(organization_id: uuid.UUID) -> None:
    async with async_session() as db:
        existing = await db.execute(
            select(TicketPriority.name).where(TicketPriority.organization_id == organization_id)
        )
        existing_names = set(existing.scalars().all())

        created = 0
        for name, level, first_response_hours, resolution_hours in PRIORITY_DEFAULTS:
            if name in existing_names:
                continue
            priority = TicketPriority(
                organization_id=organization_id,
                name=name,
                level=level,
                sla_hours=resolution_hours,
            )
            db.add(priority)
            await db.flush()
            db.add(
                SlaPolicy(
                    organization_id=organization_id,
                    ticket_priority_id=priority.id,
                    name=f"{name.capitalize()} priority",
                    first_response_hours=min(first_response_hours, resolution_hours),
                    next_response_hours=max(2.0, resolution_hours / 2),
                    resolution_hours=resolution_hours,
                )
            )
            created += 1

        has_hours = await db.execute(
            select(BusinessHours.id).where(BusinessHours.organization_id == organization_id)
        )
        if has_hours.first() is None:
            db.add(
                BusinessHours(
                    organization_id=organization_id,
                    weekly_schedule=DEFAULT_WEEKLY_SCHEDULE,
                    is_default=True,
                )
            )

        await db.commit()

        print("=" * 60)
        print(f"Organization: {organization_id}")
        print(f"Created {created} priorities with SLA policies")
        print(f"Admin token (local use): {create_access_token('seed-admin', 'admin')}")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--organization-id", type=uuid.UUID, default=None, help="Organization to seed (new one if omitted)")
    args = parser.parse_args()
    asyncio.run(seed(args.organization_id or uuid.uuid4()))
