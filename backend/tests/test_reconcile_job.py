import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fuel_queue.config import Settings
from fuel_queue.core.constants import RECONCILE_JOB_ID, SWEEP_JOB_ID
from fuel_queue.scheduler.reconcile_job import run_reconcile_job, run_sweep_job, schedule_reconciliation


def test_schedule_registers_tick_and_sweep(reconciler) -> None:
    scheduler = AsyncIOScheduler()
    settings = Settings(_env_file=None, tick_interval_ms=1000, sweep_interval_seconds=120)

    schedule_reconciliation(scheduler, reconciler, settings)

    tick = scheduler.get_job(RECONCILE_JOB_ID)
    assert tick.trigger.interval.total_seconds() == 1.0
    assert tick.max_instances == 1
    assert tick.coalesce is True
    assert tick.args == (reconciler,)
    assert scheduler.get_job(SWEEP_JOB_ID).trigger.interval.total_seconds() == 120


@pytest.mark.asyncio
async def test_reconcile_job_runs_one_cycle(reconciler) -> None:
    await run_reconcile_job(reconciler)
    assert reconciler.cycle_count == 1


@pytest.mark.asyncio
async def test_jobs_never_raise(reconciler, monkeypatch) -> None:
    async def broken_cycle(now=None):
        raise RuntimeError("bug")

    def broken_sweep(now=None):
        raise RuntimeError("bug")

    monkeypatch.setattr(reconciler, "run_cycle", broken_cycle)
    monkeypatch.setattr(reconciler, "sweep", broken_sweep)

    await run_reconcile_job(reconciler)
    await run_sweep_job(reconciler)
