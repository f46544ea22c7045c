"""
Connection registry: which stations are watched, by which connections, and which live
connection reaches each driver.

One instance is owned by the app and injected into the socket handlers and the reconciler.
All mutation happens on the event loop (socket events, scheduler jobs), so no locking.

Replace-on-rejoin: a later join for the same driver silently supersedes the earlier
connection. The old connection keeps watching its station (broadcasts) but no longer
receives that driver's unicast events.
"""
import logging
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._driver_to_conn: dict[str, str] = {}
        self._conn_to_driver: dict[str, str] = {}
        self._driver_station: dict[str, str] = {}
        # WatchSet: station_id -> connections currently watching it (may be empty until swept)
        self._watchers: dict[str, set[str]] = {}
        # station_id -> when its last watcher left; absent while watched
        self._idle_since: dict[str, datetime] = {}

    # --- registration ---

    def register_watch(self, station_id: str, driver_id: str | None, connection_id: str) -> None:
        """Add station to the watch set and bind driver <-> connection. Idempotent."""
        self._watchers.setdefault(station_id, set()).add(connection_id)
        self._idle_since.pop(station_id, None)
        if not driver_id:
            return

        prior_conn = self._driver_to_conn.get(driver_id)
        if prior_conn is not None and prior_conn != connection_id:
            self._conn_to_driver.pop(prior_conn, None)
            logger.info("Driver %s moved from connection %s to %s", driver_id, prior_conn, connection_id)

        prior_driver = self._conn_to_driver.get(connection_id)
        if prior_driver is not None and prior_driver != driver_id:
            # one driver per connection: the earlier driver is no longer reachable here
            self._driver_to_conn.pop(prior_driver, None)
            self._driver_station.pop(prior_driver, None)

        self._driver_to_conn[driver_id] = connection_id
        self._conn_to_driver[connection_id] = driver_id
        self._driver_station[driver_id] = station_id

    def unregister(self, connection_id: str, now: datetime | None = None) -> str | None:
        """Remove the connection's binding (both directions) and its watches. Returns the unbound driver id."""
        now = now or datetime.now(timezone.utc)
        for station_id, conns in self._watchers.items():
            if connection_id in conns:
                conns.discard(connection_id)
                if not conns:
                    self._idle_since[station_id] = now

        driver_id = self._conn_to_driver.pop(connection_id, None)
        if driver_id is None:
            return None
        if self._driver_to_conn.get(driver_id) == connection_id:
            del self._driver_to_conn[driver_id]
            self._driver_station.pop(driver_id, None)
        return driver_id

    # --- lookups ---

    def lookup_connection(self, driver_id: str) -> str | None:
        """Live connection for the driver, or None when the driver is not reachable."""
        return self._driver_to_conn.get(driver_id)

    def driver_for(self, connection_id: str) -> str | None:
        return self._conn_to_driver.get(connection_id)

    def driver_station(self, driver_id: str) -> str | None:
        """Station the driver last joined from, while connected."""
        return self._driver_station.get(driver_id)

    def active_stations(self) -> frozenset[str]:
        """Snapshot of the watch set. Later joins are picked up by the next call."""
        return frozenset(self._watchers)

    def watchers(self, station_id: str) -> frozenset[str]:
        return frozenset(self._watchers.get(station_id, ()))

    @property
    def connected_driver_count(self) -> int:
        return len(self._driver_to_conn)

    # --- eviction ---

    def sweep_idle_stations(self, now: datetime, idle_after: timedelta) -> list[str]:
        """Drop stations that have had no watchers for longer than idle_after."""
        evicted = [
            station_id
            for station_id, since in self._idle_since.items()
            if now - since > idle_after and not self._watchers.get(station_id)
        ]
        for station_id in evicted:
            self._watchers.pop(station_id, None)
            self._idle_since.pop(station_id, None)
        if evicted:
            logger.info("Evicted %s idle station(s) from watch set: %s", len(evicted), evicted)
        return evicted
