"""Tests for the APScheduler-driven cron ticker."""

from datetime import datetime, timedelta, timezone

import pytest

from fakes import FakeSource, MutableClock, cron_task
from harvester.orchestrator.config import CronConfig
from harvester.orchestrator.scheduler import TICK_JOB_ID, CronTicker


@pytest.mark.asyncio
async def test_tick_evaluates_cron_tasks_with_tick_time(manager):
    await manager.schedule_task(cron_task("c1", "*/1 * * * *"))
    tick_time = MutableClock(datetime(2024, 5, 1, 8, 15, 3, tzinfo=timezone.utc))
    ticker = CronTicker(manager, clock=tick_time)

    status = await ticker.tick()

    assert status.success
    assert ticker.last_result is status
    assert manager.get_task("c1").last_run == tick_time.now
    context = FakeSource.instances[0].calls[0][0]
    assert context.trigger == "cron"


@pytest.mark.asyncio
async def test_consecutive_ticks_fire_once_per_slot(manager):
    await manager.schedule_task(cron_task("c1", "*/1 * * * *"))
    clock = MutableClock(datetime(2024, 5, 1, 8, 15, 3, tzinfo=timezone.utc))
    ticker = CronTicker(manager, clock=clock)

    await ticker.tick()
    clock.now += timedelta(seconds=30)
    await ticker.tick()
    clock.now += timedelta(seconds=30)
    await ticker.tick()

    assert len(FakeSource.instances[0].calls) == 2


@pytest.mark.asyncio
async def test_start_registers_interval_job_and_shutdown_is_idempotent(manager, caplog):
    ticker = CronTicker(manager, CronConfig(tick_interval_seconds=15, due_window_seconds=20))

    ticker.start()
    try:
        assert ticker.running
        job = ticker._scheduler.get_job(TICK_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(seconds=15)

        ticker.start()
        assert "already running" in caplog.text
    finally:
        ticker.shutdown()

    assert not ticker.running
    ticker.shutdown()
    assert "not running" in caplog.text
