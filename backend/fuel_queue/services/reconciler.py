"""
Reconciliation loop: one tick reads every watched station, broadcasts its snapshot,
runs the notification policy and delivers targeted notices.

Two states: IDLE (waiting for the scheduler) and RECONCILING. A tick that arrives while a
cycle is still running is skipped, so cycles never overlap. Store reads run on a bounded
worker pool owned by the reconciler, concurrently across stations, each under a timeout.
A read that times out keeps its worker until the store answers; until then its station is
not read again and counts as failed. A failing station is logged and skipped; it never
stops the loop and never clears registry or history state.

Delivery is best-effort and at-most-once: a notice for a driver with no live connection
is dropped (the policy already ran, so near-turn history stays correct).
"""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol

from fuel_queue.core.constants import EVENT_NEAR_TURN, EVENT_QUEUE_COMPLETED, EVENT_YOUR_TURN
from fuel_queue.core.errors import StoreUnavailable
from fuel_queue.services.connection_registry import ConnectionRegistry
from fuel_queue.services.dispatch import EventDispatcher
from fuel_queue.services.notification_policy import (
    DEFAULT_POLICY_CONFIG,
    EventKind,
    Notice,
    NotificationHistory,
    PolicyConfig,
    QueueEntry,
    decide,
)

logger = logging.getLogger(__name__)

EVENT_NAMES = {
    EventKind.NEAR_TURN: EVENT_NEAR_TURN,
    EventKind.YOUR_TURN: EVENT_YOUR_TURN,
    EventKind.QUEUE_COMPLETED: EVENT_QUEUE_COMPLETED,
}


class QueueReader(Protocol):
    def read_station(self, station_id: str) -> list[QueueEntry]: ...

    def mark_completed(self, driver_id: str, station_id: str) -> int: ...


class ReconcilerState(str, Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"


@dataclass
class CycleReport:
    started_at: datetime
    stations: list[str] = field(default_factory=list)
    failed_stations: list[str] = field(default_factory=list)
    broadcasts: int = 0
    notices_sent: int = 0
    notices_dropped: int = 0
    delivery_errors: int = 0
    skipped: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        registry: ConnectionRegistry,
        reader: QueueReader,
        dispatcher: EventDispatcher,
        policy_config: PolicyConfig = DEFAULT_POLICY_CONFIG,
        *,
        store_timeout_seconds: float = 2.0,
        store_workers: int = 8,
        history_ttl: timedelta = timedelta(hours=1),
        station_idle_ttl: timedelta = timedelta(minutes=30),
        history: NotificationHistory | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.history = history if history is not None else NotificationHistory()
        self._reader = reader
        self._dispatcher = dispatcher
        self._policy_config = policy_config
        self._store_timeout = store_timeout_seconds
        self._history_ttl = history_ttl
        self._station_idle_ttl = station_idle_ttl
        self._clock = clock
        self._read_executor = ThreadPoolExecutor(
            max_workers=max(1, store_workers),
            thread_name_prefix="queue_store_read",
        )
        # Completion writes never wait behind station reads
        self._write_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="queue_store_write")
        # station_id -> read submitted to the pool and not yet returned (may outlive its tick)
        self._in_flight: dict[str, asyncio.Future] = {}

        self._state = ReconcilerState.IDLE
        # station_id -> {driver_id: waiting position} from the last successful read
        self._positions: dict[str, dict[str, int]] = {}
        self.cycle_count = 0
        self.skipped_count = 0
        self.last_cycle_at: datetime | None = None
        self.last_cycle_duration: float | None = None
        self.last_report: CycleReport | None = None

    @property
    def state(self) -> ReconcilerState:
        return self._state

    # --- store access ---

    @property
    def in_flight_reads(self) -> int:
        return len(self._in_flight)

    def _read_finished(self, station_id: str, future: asyncio.Future) -> None:
        if self._in_flight.get(station_id) is future:
            del self._in_flight[station_id]

    async def _read_station(self, station_id: str) -> list[QueueEntry]:
        """
        Read one station on the read pool; a timeout counts as the store being unavailable.
        The worker is not interrupted, so the station stays in flight (and is not
        resubmitted) until that read returns.
        """
        if station_id in self._in_flight:
            raise StoreUnavailable(station_id, "previous read still running")
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._read_executor, self._reader.read_station, station_id)
        self._in_flight[station_id] = future
        future.add_done_callback(lambda f: self._read_finished(station_id, f))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._store_timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(station_id, f"timed out after {self._store_timeout}s") from e

    def close(self) -> None:
        """Release the store worker pools. Reads still blocked in the store are abandoned."""
        self._read_executor.shutdown(wait=False, cancel_futures=True)
        self._write_executor.shutdown(wait=False, cancel_futures=True)

    # --- the cycle ---

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """One tick over the watch set as it stands when the tick starts."""
        now = now or self._clock()
        if self._state is ReconcilerState.RECONCILING:
            self.skipped_count += 1
            logger.debug("Reconcile tick skipped: previous cycle still running")
            return CycleReport(started_at=now, skipped=True)

        self._state = ReconcilerState.RECONCILING
        started = time.monotonic()
        report = CycleReport(started_at=now)
        try:
            stations = sorted(self.registry.active_stations())
            report.stations = stations
            results = await asyncio.gather(
                *(self._read_station(s) for s in stations),
                return_exceptions=True,
            )
            for station_id, result in zip(stations, results):
                if isinstance(result, StoreUnavailable):
                    logger.warning("Skipping station %s this cycle: %s", station_id, result)
                    report.failed_stations.append(station_id)
                    continue
                if isinstance(result, Exception):
                    logger.error("Reading station %s failed: %s", station_id, result, exc_info=result)
                    report.failed_stations.append(station_id)
                    continue
                if isinstance(result, BaseException):
                    raise result
                try:
                    await self._reconcile_station(station_id, result, now, report)
                except Exception:
                    logger.exception("Reconciling station %s failed", station_id)
                    report.failed_stations.append(station_id)
        finally:
            self._state = ReconcilerState.IDLE
            self.cycle_count += 1
            self.last_cycle_at = now
            self.last_cycle_duration = time.monotonic() - started
            self.last_report = report

        logger.debug(
            "Reconcile cycle: stations=%s failed=%s sent=%s dropped=%s in %.3fs",
            len(report.stations),
            len(report.failed_stations),
            report.notices_sent,
            report.notices_dropped,
            self.last_cycle_duration,
        )
        return report

    async def _reconcile_station(
        self, station_id: str, entries: list[QueueEntry], now: datetime, report: CycleReport
    ) -> None:
        decision = decide(entries, now, self.history, self._policy_config)
        self.history.apply(decision.history_update)
        self._positions[station_id] = decision.positions

        try:
            await self._dispatcher.broadcast(station_id, decision.snapshot.to_payload())
            report.broadcasts += 1
        except Exception as e:
            report.delivery_errors += 1
            logger.warning("Broadcast to station %s failed: %s", station_id, e)

        for notice in decision.notices:
            await self._deliver(notice.driver_id, EVENT_NAMES[notice.kind], notice.to_payload(), report)

    async def _deliver(self, driver_id: str, event: str, payload: dict[str, Any], report: CycleReport | None = None) -> bool:
        """Unicast to the driver's live connection. Returns False when dropped or failed."""
        connection_id = self.registry.lookup_connection(driver_id)
        if connection_id is None:
            if report is not None:
                report.notices_dropped += 1
            logger.debug("Driver %s not connected; dropping %s", driver_id, event)
            return False
        try:
            await self._dispatcher.send(connection_id, event, payload)
        except Exception as e:
            if report is not None:
                report.delivery_errors += 1
            logger.warning("Sending %s to driver %s failed: %s", event, driver_id, e)
            return False
        if report is not None:
            report.notices_sent += 1
        logger.info("Sent %s to driver %s", event, driver_id)
        return True

    # --- out-of-band operations ---

    async def complete_service(self, driver_id: str, station_id: str, now: datetime | None = None) -> bool:
        """
        Mark the driver's queue entry completed, then notify the driver if connected.
        Returns True when the driver had a live connection to notify.

        The write is awaited until the store answers, not cut off at the read timeout,
        so StoreUnavailable always means the row was not updated. Its duration is
        bounded by the engine's connect, pool and statement timeouts.
        """
        now = now or self._clock()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._write_executor, self._reader.mark_completed, driver_id, station_id)
        self._positions.get(station_id, {}).pop(driver_id, None)

        if self.registry.lookup_connection(driver_id) is None:
            logger.info("Service completed for driver %s at station %s; driver not connected", driver_id, station_id)
            return False
        notice = Notice(driver_id=driver_id, kind=EventKind.QUEUE_COMPLETED, station_id=station_id, completed_at=now)
        await self._deliver(driver_id, EVENT_NAMES[notice.kind], notice.to_payload())
        return True

    async def force_notify(self, driver_id: str) -> bool:
        """Send a near-turn notice now, ignoring cooldown. History is not touched. False if unreachable."""
        station_id = self.registry.driver_station(driver_id)
        if station_id is None:
            logger.debug("Driver %s is not watching a station; nothing to notify", driver_id)
            return False
        position = self._positions.get(station_id, {}).get(driver_id)
        notice = Notice(driver_id=driver_id, kind=EventKind.NEAR_TURN, station_id=station_id, position=position)
        return await self._deliver(driver_id, EVENT_NAMES[notice.kind], notice.to_payload())

    # --- housekeeping ---

    def sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Evict stale near-turn history and stations nobody has watched for a while."""
        now = now or self._clock()
        pruned = self.history.prune(now, self._history_ttl)
        evicted = self.registry.sweep_idle_stations(now, self._station_idle_ttl)
        for station_id in evicted:
            self._positions.pop(station_id, None)
        if pruned:
            logger.debug("Pruned %s near-turn history entries", pruned)
        return {"history_pruned": pruned, "stations_evicted": len(evicted)}

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "cycle_count": self.cycle_count,
            "skipped_count": self.skipped_count,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_cycle_duration_seconds": self.last_cycle_duration,
            "last_failed_stations": list(self.last_report.failed_stations) if self.last_report else [],
            "active_stations": sorted(self.registry.active_stations()),
            "connected_drivers": self.registry.connected_driver_count,
            "history_size": len(self.history),
            "in_flight_reads": self.in_flight_reads,
        }
