"""Shared fixtures: in-memory store, fake reader/dispatcher, registry and reconciler."""
import os

# Point the app at SQLite before fuel_queue.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from fuel_queue.core.errors import StoreUnavailable
from fuel_queue.db.base import Base
from fuel_queue.db.session import build_engine
from fuel_queue.services.connection_registry import ConnectionRegistry
from fuel_queue.services.notification_policy import PolicyConfig, QueueEntry
from fuel_queue.services.reconciler import Reconciler

T0 = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)


def entry(id, status="waiting", driver_id=None, station_id="1", queue_number=None):
    return QueueEntry(
        id=id,
        queue_number=queue_number if queue_number is not None else 100 + id,
        status=status,
        driver_id=driver_id,
        station_id=station_id,
    )


class FakeReader:
    """Store double: rows per station, optional failing stations."""

    def __init__(self, rows=None):
        self.rows = rows or {}
        self.failing = set()
        self.reads = []
        self.completed = []

    def read_station(self, station_id):
        self.reads.append(station_id)
        if station_id in self.failing:
            raise StoreUnavailable(station_id, "connection refused")
        return list(self.rows.get(station_id, []))

    def mark_completed(self, driver_id, station_id):
        if station_id in self.failing:
            raise StoreUnavailable(station_id, "connection refused")
        self.completed.append((driver_id, station_id))
        updated = 0
        rows = self.rows.get(station_id, [])
        for i, e in enumerate(rows):
            if e.driver_id == driver_id:
                rows[i] = QueueEntry(e.id, e.queue_number, "completed", e.driver_id, e.station_id)
                updated += 1
        return updated


class FakeDispatcher:
    def __init__(self):
        self.broadcasts = []
        self.sent = []

    async def broadcast(self, station_id, payload):
        self.broadcasts.append((station_id, payload))

    async def send(self, connection_id, event, payload):
        self.sent.append((connection_id, event, payload))

    def events(self, event):
        return [s for s in self.sent if s[1] == event]


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def reader():
    return FakeReader()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def policy_config():
    return PolicyConfig()


@pytest.fixture
def reconciler(registry, reader, dispatcher, policy_config):
    return Reconciler(registry, reader, dispatcher, policy_config, store_timeout_seconds=1.0)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
