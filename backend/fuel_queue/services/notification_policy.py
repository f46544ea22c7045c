"""
Notification policy: decide, per station and per cycle, which drivers get a targeted notice.

Pure logic, no I/O. Given a station's queue entries, the current time and the near-turn
history, returns the station snapshot to broadcast, the notices to send and the history
update to apply. Whether a driver is reachable is decided later, at dispatch time, so the
history stays correct while a driver is briefly disconnected.

Rules:
  - Position is 1-based over `waiting` entries, in total order (status priority, then id).
  - Near-turn: driver at `near_turn_position` (default 3), at most once per cooldown window.
  - Your-turn: driver at position 1, every cycle, no cooldown (a persistent nudge).
  - Estimated wait: max(base, waiting * per_vehicle) minutes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping

from fuel_queue.core.constants import (
    NO_CURRENT_NUMBER,
    STATUS_PRIORITY,
    STATUS_PRIORITY_OTHER,
    STATUS_SERVING,
    STATUS_WAITING,
)

YOUR_TURN_POSITION = 1


class EventKind(str, Enum):
    NEAR_TURN = "near_turn"
    YOUR_TURN = "your_turn"
    QUEUE_COMPLETED = "queue_completed"


@dataclass(frozen=True)
class PolicyConfig:
    near_turn_position: int = 3
    near_turn_cooldown: timedelta = timedelta(minutes=10)
    wait_base_minutes: int = 5
    wait_per_vehicle_minutes: int = 2


DEFAULT_POLICY_CONFIG = PolicyConfig()


@dataclass(frozen=True)
class QueueEntry:
    """One queue row as read from the store."""

    id: int
    queue_number: Any
    status: str
    driver_id: str | None
    station_id: str


@dataclass(frozen=True)
class StationSnapshot:
    waiting_count: int
    current_serving_number: Any
    estimated_wait_minutes: int

    def to_payload(self) -> dict[str, Any]:
        """Wire format for queue_update_<station>."""
        return {
            "queue_count": self.waiting_count,
            "current_number": self.current_serving_number,
            "estimated_wait": self.estimated_wait_minutes,
        }


@dataclass(frozen=True)
class Notice:
    driver_id: str
    kind: EventKind
    station_id: str
    position: int | None = None
    queue_number: Any = None
    completed_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.kind == EventKind.YOUR_TURN:
            return {"driverId": self.driver_id, "stationId": self.station_id, "queueNumber": self.queue_number}
        if self.kind == EventKind.QUEUE_COMPLETED:
            completed_at = self.completed_at.isoformat() if self.completed_at else None
            return {"driverId": self.driver_id, "stationId": self.station_id, "completedAt": completed_at}
        return {"driverId": self.driver_id, "position": self.position, "stationId": self.station_id}


@dataclass
class PolicyDecision:
    snapshot: StationSnapshot
    notices: list[Notice] = field(default_factory=list)
    history_update: dict[str, datetime] = field(default_factory=dict)
    # driver_id -> waiting position, for every waiting driver (not only notified ones)
    positions: dict[str, int] = field(default_factory=dict)


class NotificationHistory:
    """
    Last near-turn notice per driver. Advisory cache only: losing it (restart, pruning)
    can at worst cause one duplicate near-turn notice, never a wrong queue order.
    """

    def __init__(self) -> None:
        self._last_near_turn: dict[str, datetime] = {}

    def last_near_turn(self, driver_id: str) -> datetime | None:
        return self._last_near_turn.get(driver_id)

    def apply(self, update: Mapping[str, datetime]) -> None:
        self._last_near_turn.update(update)

    def prune(self, now: datetime, ttl: timedelta) -> int:
        """Drop entries older than ttl. Returns the number removed."""
        cutoff = now - ttl
        stale = [d for d, at in self._last_near_turn.items() if at < cutoff]
        for d in stale:
            del self._last_near_turn[d]
        return len(stale)

    def as_mapping(self) -> Mapping[str, datetime]:
        return self._last_near_turn

    def __len__(self) -> int:
        return len(self._last_near_turn)


def sort_key(entry: QueueEntry) -> tuple[int, int]:
    return (STATUS_PRIORITY.get(entry.status, STATUS_PRIORITY_OTHER), entry.id)


def order_entries(entries: Iterable[QueueEntry]) -> list[QueueEntry]:
    """Total order used for positions: serving < waiting < other, ties broken by id."""
    return sorted(entries, key=sort_key)


def estimate_wait(waiting_count: int, config: PolicyConfig = DEFAULT_POLICY_CONFIG) -> int:
    return max(config.wait_base_minutes, waiting_count * config.wait_per_vehicle_minutes)


def build_snapshot(ordered: list[QueueEntry], config: PolicyConfig = DEFAULT_POLICY_CONFIG) -> StationSnapshot:
    waiting_count = sum(1 for e in ordered if e.status == STATUS_WAITING)
    serving = next((e for e in ordered if e.status == STATUS_SERVING), None)
    current = serving.queue_number if serving is not None and serving.queue_number is not None else NO_CURRENT_NUMBER
    return StationSnapshot(
        waiting_count=waiting_count,
        current_serving_number=current,
        estimated_wait_minutes=estimate_wait(waiting_count, config),
    )


def near_turn_due(last_notice: datetime | None, now: datetime, cooldown: timedelta) -> bool:
    if last_notice is None:
        return True
    return (now - last_notice) > cooldown


def decide(
    entries: Iterable[QueueEntry],
    now: datetime,
    history: NotificationHistory | Mapping[str, datetime],
    config: PolicyConfig = DEFAULT_POLICY_CONFIG,
) -> PolicyDecision:
    """Compute the station snapshot, notices and near-turn history update for one station."""
    if isinstance(history, NotificationHistory):
        history = history.as_mapping()
    ordered = order_entries(entries)
    decision = PolicyDecision(snapshot=build_snapshot(ordered, config))

    waiting = [e for e in ordered if e.status == STATUS_WAITING]
    for index, entry in enumerate(waiting):
        position = index + 1
        driver_id = entry.driver_id
        if not driver_id:
            continue  # walk-in without the app
        decision.positions[driver_id] = position

        if position == config.near_turn_position and near_turn_due(
            history.get(driver_id), now, config.near_turn_cooldown
        ):
            decision.notices.append(
                Notice(driver_id=driver_id, kind=EventKind.NEAR_TURN, station_id=entry.station_id, position=position)
            )
            decision.history_update[driver_id] = now

        if position == YOUR_TURN_POSITION:
            decision.notices.append(
                Notice(
                    driver_id=driver_id,
                    kind=EventKind.YOUR_TURN,
                    station_id=entry.station_id,
                    position=position,
                    queue_number=entry.queue_number,
                )
            )
    return decision
