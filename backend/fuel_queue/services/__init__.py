"""
Queue engine services: registry, reader, policy, dispatch and the reconciliation loop.
"""
from fuel_queue.services.connection_registry import ConnectionRegistry
from fuel_queue.services.dispatch import EventDispatcher, SocketIODispatcher
from fuel_queue.services.queue_store import QueueSnapshotReader
from fuel_queue.services.reconciler import CycleReport, Reconciler, ReconcilerState

__all__ = [
    "ConnectionRegistry",
    "CycleReport",
    "EventDispatcher",
    "QueueSnapshotReader",
    "Reconciler",
    "ReconcilerState",
    "SocketIODispatcher",
]
