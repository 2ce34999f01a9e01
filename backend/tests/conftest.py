import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sla_engine.database import get_db
from sla_engine.exceptions import NotificationDeliveryError
from sla_engine.main import create_app
from sla_engine.models import Base, SlaInstance, SlaPolicy, Ticket, TicketPriority
from sla_engine.schemas.notification import EscalationEvent
from sla_engine.schemas.scheduler import SchedulerConfig
from sla_engine.services import ticket_service
from sla_engine.services.auth_service import create_access_token
from sla_engine.tasks.sla_scheduler import SlaScheduler

# Monday, outside business hours (09:00-17:00 UTC).
T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    """Collects escalation events; set ``fail`` to make delivery raise."""

    def __init__(self):
        self.events: list[EscalationEvent] = []
        self.fail = False

    async def notify(self, event: EscalationEvent) -> None:
        if self.fail:
            raise NotificationDeliveryError("notification service unavailable")
        self.events.append(event)

    async def close(self) -> None:
        pass


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite file per test; every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def priorities(db: AsyncSession, org_id: uuid.UUID) -> dict[str, TicketPriority]:
    """Default low/medium/high/urgent priorities for the test organization."""
    rows = {}
    for level, (name, hours) in enumerate([("low", 168), ("medium", 72), ("high", 24), ("urgent", 8)]):
        priority = TicketPriority(organization_id=org_id, name=name, sla_hours=hours, level=level)
        db.add(priority)
        rows[name] = priority
    await db.commit()
    return rows


@pytest.fixture
async def high_policy(db: AsyncSession, org_id: uuid.UUID, priorities) -> SlaPolicy:
    """4h first response, 8h next response, 24h resolution."""
    policy = SlaPolicy(
        organization_id=org_id,
        ticket_priority_id=priorities["high"].id,
        name="High",
        first_response_hours=4,
        next_response_hours=8,
        resolution_hours=24,
    )
    db.add(policy)
    await db.commit()
    return policy


@pytest.fixture
async def urgent_policy(db: AsyncSession, org_id: uuid.UUID, priorities) -> SlaPolicy:
    """1h first response, 2h next response, 8h resolution."""
    policy = SlaPolicy(
        organization_id=org_id,
        ticket_priority_id=priorities["urgent"].id,
        name="Urgent",
        first_response_hours=1,
        next_response_hours=2,
        resolution_hours=8,
    )
    db.add(policy)
    await db.commit()
    return policy


@pytest.fixture
def create_ticket(db: AsyncSession, org_id: uuid.UUID, priorities):
    """Factory: create a ticket through the ticketing path and commit it."""

    async def _create(priority: str = "high", created_at: datetime = T0, **kwargs) -> Ticket:
        ticket = await ticket_service.create_ticket(
            db,
            organization_id=org_id,
            title=kwargs.pop("title", "Printer on fire"),
            priority_id=priorities[priority].id,
            created_at=created_at,
            **kwargs,
        )
        await db.commit()
        return ticket

    return _create


async def load_instance(session_factory, ticket_id: uuid.UUID) -> SlaInstance:
    """Read an instance in a fresh session, independent of the test session's state."""
    async with session_factory() as session:
        result = await session.execute(select(SlaInstance).where(SlaInstance.ticket_id == ticket_id))
        return result.scalar_one()


@pytest.fixture
def scheduler(session_factory, notifier) -> SlaScheduler:
    return SlaScheduler(
        session_factory,
        notifier,
        config=SchedulerConfig(batch_size=100, escalation_thresholds_minutes=[60, 240]),
        clock=lambda: T0,
    )


@pytest.fixture
async def client(db: AsyncSession, scheduler: SlaScheduler) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the FastAPI app with test DB override."""
    app = create_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.sla_scheduler = scheduler

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def admin_token() -> str:
    return create_access_token("admin-1", "admin")


@pytest.fixture
def manager_token() -> str:
    return create_access_token("manager-1", "manager")


@pytest.fixture
def agent_token() -> str:
    return create_access_token("agent-1", "agent")


def auth_header(token: str) -> dict:
    """Build an Authorization header dict from a JWT token."""
    return {"Authorization": f"Bearer {token}"}
