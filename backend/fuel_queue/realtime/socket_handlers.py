"""
Socket.IO event handlers: the inbound side of the transport.

join_monitor {station_id, driver_id?}: join the station room and register the watch.
  driver_id is optional; dashboards watch a station without being a driver.
disconnect: drop the connection's driver binding and station watches.
"""
import logging
from typing import Any

import socketio

from fuel_queue.core.constants import (
    EVENT_JOIN_MONITOR,
    EVENT_MONITOR_ERROR,
    EVENT_MONITOR_JOINED,
    station_room,
)
from fuel_queue.core.errors import InvalidRequest
from fuel_queue.services.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _clean_id(value: Any) -> str | None:
    """Ids arrive as numbers or strings from the UI; normalize so 7 and "7" match."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def parse_join_payload(data: Any) -> tuple[str, str | None]:
    """Return (station_id, driver_id). Raises InvalidRequest when station_id is missing."""
    if not isinstance(data, dict):
        raise InvalidRequest("join_monitor payload must be an object")
    station_id = _clean_id(data.get("station_id"))
    if station_id is None:
        raise InvalidRequest("station_id is required")
    return station_id, _clean_id(data.get("driver_id"))


class QueueSocketHandlers:
    def __init__(self, sio: socketio.AsyncServer, registry: ConnectionRegistry):
        self.sio = sio
        self.registry = registry

    def register(self) -> None:
        self.sio.on("connect")(self.handle_connect)
        self.sio.on(EVENT_JOIN_MONITOR)(self.handle_join_monitor)
        self.sio.on("disconnect")(self.handle_disconnect)

    async def handle_connect(self, sid, environ, auth=None):
        logger.info("Client connected: %s", sid)

    async def handle_join_monitor(self, sid, data):
        try:
            station_id, driver_id = parse_join_payload(data)
        except InvalidRequest as e:
            logger.warning("Rejected join_monitor from %s: %s", sid, e)
            await self.sio.emit(EVENT_MONITOR_ERROR, {"error": str(e)}, to=sid)
            return

        await self.sio.enter_room(sid, station_room(station_id))
        self.registry.register_watch(station_id, driver_id, sid)
        if driver_id:
            logger.info("Driver %s registered on station %s (sid=%s)", driver_id, station_id, sid)
        else:
            logger.info("Observer %s watching station %s", sid, station_id)
        await self.sio.emit(EVENT_MONITOR_JOINED, {"station_id": station_id, "driver_id": driver_id}, to=sid)

    async def handle_disconnect(self, sid, reason=None):
        logger.info("Client disconnected: %s", sid)
        driver_id = self.registry.unregister(sid)
        if driver_id:
            logger.info("Cleaned up driver %s", driver_id)
