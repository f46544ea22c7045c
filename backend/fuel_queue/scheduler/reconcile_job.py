"""
Registers the reconciliation tick and the state sweep on the app's AsyncIOScheduler.

Tick: every tick_interval_ms, one Reconciler.run_cycle. max_instances=1 and coalesce
keep a slow cycle from stacking missed runs; the reconciler also skips overlapping ticks.
Sweep: every sweep_interval_seconds, evict stale near-turn history and idle stations.
Both jobs are coroutines so they run on the event loop that owns the registry.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fuel_queue.config import Settings
from fuel_queue.core.constants import RECONCILE_JOB_ID, SWEEP_JOB_ID
from fuel_queue.services.reconciler import Reconciler

logger = logging.getLogger(__name__)


async def run_reconcile_job(reconciler: Reconciler) -> None:
    try:
        await reconciler.run_cycle()
    except Exception as e:
        # run_cycle isolates per-station failures; this only catches bugs outside them
        logger.exception("Reconcile job failed: %s", e)


async def run_sweep_job(reconciler: Reconciler) -> None:
    try:
        reconciler.sweep()
    except Exception as e:
        logger.exception("Sweep job failed: %s", e)


def schedule_reconciliation(scheduler: AsyncIOScheduler, reconciler: Reconciler, settings: Settings) -> None:
    scheduler.add_job(
        run_reconcile_job,
        "interval",
        seconds=settings.tick_interval_seconds,
        args=[reconciler],
        id=RECONCILE_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        run_sweep_job,
        "interval",
        seconds=settings.sweep_interval_seconds,
        args=[reconciler],
        id=SWEEP_JOB_ID,
        coalesce=True,
        replace_existing=True,
    )
    logger.info(
        "Scheduled reconcile every %sms and state sweep every %ss",
        settings.tick_interval_ms,
        settings.sweep_interval_seconds,
    )
