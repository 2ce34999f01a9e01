import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from sla_engine.schemas.scheduler import SchedulerConfig
from sla_engine.tasks.sla_scheduler import SlaScheduler
from tests.conftest import T0, load_instance


pytestmark = pytest.mark.asyncio


def _scheduler(session_factory, notifier, now, **config) -> SlaScheduler:
    return SlaScheduler(session_factory, notifier, config=SchedulerConfig(**config), clock=lambda: now)


async def _wait_for(predicate, timeout: float = 5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


async def test_manual_status_check_flags_and_records(session_factory, notifier, high_policy, create_ticket):
    ticket = await create_ticket()
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=5))

    result = await scheduler.trigger_status_check()

    assert result.updated == 1
    assert len(notifier.events) == 1
    status = scheduler.get_status()
    assert status.running is False
    assert status.last_status_check_at == T0 + timedelta(hours=5)
    assert status.last_status_check_result.updated == 1
    assert status.last_escalation_check_at is None
    instance = await load_instance(session_factory, ticket.id)
    assert instance.first_response_met is False


async def test_status_check_drains_all_batches(session_factory, notifier, high_policy, create_ticket):
    for i in range(5):
        await create_ticket(title=f"ticket {i}")
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=5), batch_size=2)

    result = await scheduler.trigger_status_check()

    assert result.updated == 5
    assert len(notifier.events) == 5


async def test_manual_escalation_check(session_factory, notifier, high_policy, create_ticket):
    await create_ticket()
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=26))
    await scheduler.trigger_status_check()

    result = await scheduler.trigger_escalation_check()

    # resolution breached at T0+24h, two hours old: past the 60 minute threshold only
    assert result.updated == 1
    assert [e.escalation_level for e in notifier.events][-1] == 2
    assert scheduler.get_status().last_escalation_check_result.updated == 1


async def test_start_runs_both_loops_immediately_and_stops(
    session_factory, notifier, high_policy, create_ticket
):
    await create_ticket()
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=4, minutes=30))

    scheduler.start()
    try:
        await _wait_for(
            lambda: scheduler.get_status().last_status_check_at is not None
            and scheduler.get_status().last_escalation_check_at is not None
        )
        assert scheduler.running is True
        assert len(notifier.events) == 1
    finally:
        await scheduler.stop(timeout=5)

    assert scheduler.running is False


async def test_start_is_idempotent(session_factory, notifier):
    scheduler = _scheduler(session_factory, notifier, T0)

    scheduler.start()
    tasks = list(scheduler._tasks)
    scheduler.start()
    try:
        assert scheduler._tasks == tasks
    finally:
        await scheduler.stop(timeout=5)


async def test_disabled_scheduler_does_not_tick(session_factory, notifier, high_policy, create_ticket):
    await create_ticket()
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=5), enabled=False)

    scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop(timeout=5)

    assert scheduler.get_status().last_status_check_at is None
    assert notifier.events == []


async def test_update_config_validates(session_factory, notifier):
    scheduler = _scheduler(session_factory, notifier, T0)

    config = scheduler.update_config(batch_size=10, status_check_interval_minutes=1)
    assert config.batch_size == 10
    assert scheduler.get_status().config.status_check_interval_minutes == 1

    with pytest.raises(ValidationError):
        scheduler.update_config(batch_size=0)
    assert scheduler.config.batch_size == 10


async def test_notification_errors_are_counted(session_factory, notifier, high_policy, create_ticket):
    await create_ticket()
    notifier.fail = True
    scheduler = _scheduler(session_factory, notifier, T0 + timedelta(hours=5))

    await scheduler.trigger_status_check()

    assert scheduler.get_status().status_check_errors == 1


async def test_tick_exception_is_contained(session_factory, notifier, monkeypatch):
    scheduler = _scheduler(session_factory, notifier, T0)

    async def boom(*args, **kwargs):
        raise RuntimeError("store exploded")

    monkeypatch.setattr("sla_engine.services.escalation_service.escalate_breaches", boom)

    result = await scheduler.trigger_escalation_check()

    assert result.errors == 1
    assert scheduler.get_status().escalation_check_errors == 1
