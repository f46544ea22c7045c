"""
Outbound delivery boundary: broadcast to a station's watchers, or unicast to one connection.

Best-effort, at-most-once: no retry and no outbox. A Socket.IO emit only queues packets on
the server, so awaiting it does not hold the reconciliation loop on slow clients.
"""
import logging
from typing import Any, Protocol

import socketio

from fuel_queue.core.constants import station_room, station_update_event

logger = logging.getLogger(__name__)


class EventDispatcher(Protocol):
    """Interface the reconciler delivers through. Socket.IO in the app; an in-memory fake in tests."""

    async def broadcast(self, station_id: str, payload: dict[str, Any]) -> None:
        """Send a station snapshot to every watcher of the station."""
        ...

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        """Send one event to one live connection."""
        ...


class SocketIODispatcher:
    """Delivers through a python-socketio AsyncServer: one room per station, sid for unicast."""

    def __init__(self, sio: socketio.AsyncServer):
        self._sio = sio

    async def broadcast(self, station_id: str, payload: dict[str, Any]) -> None:
        await self._sio.emit(station_update_event(station_id), payload, room=station_room(station_id))

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        await self._sio.emit(event, payload, to=connection_id)
