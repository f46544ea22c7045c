"""
Queue snapshot reader: current queue rows for one station, and the completion write.

Blocking SQLAlchemy calls; the reconciler runs them in a worker thread under a timeout.
Every store failure surfaces as StoreUnavailable so callers can skip the station for this
cycle without inspecting driver-specific exceptions.
"""
import logging
from collections.abc import Callable

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fuel_queue.core.constants import STATUS_COMPLETED, STATUS_PRIORITY, STATUS_PRIORITY_OTHER
from fuel_queue.core.errors import StoreUnavailable
from fuel_queue.models.queue_entry import QueueRow
from fuel_queue.services.notification_policy import QueueEntry

logger = logging.getLogger(__name__)

_status_order = case(
    *[(QueueRow.status == status, priority) for status, priority in STATUS_PRIORITY.items()],
    else_=STATUS_PRIORITY_OTHER,
)


def _to_entry(row: QueueRow) -> QueueEntry:
    return QueueEntry(
        id=row.id,
        queue_number=row.queue_number,
        status=row.status,
        driver_id=str(row.driver_id) if row.driver_id is not None else None,
        station_id=str(row.station_id),
    )


class QueueSnapshotReader:
    """Reads and completes queue rows through a session factory (SessionLocal in the app)."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def read_station(self, station_id: str) -> list[QueueEntry]:
        """Queue rows for one station: serving first, then waiting, then the rest; ties by id."""
        db = self._session_factory()
        try:
            rows = db.execute(
                select(QueueRow)
                .where(QueueRow.station_id == station_id)
                .order_by(_status_order, QueueRow.id.asc())
            ).scalars().all()
            return [_to_entry(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailable(station_id, str(e)) from e
        finally:
            db.close()

    def mark_completed(self, driver_id: str, station_id: str) -> int:
        """Set status=completed for the driver's rows at the station. Returns rows updated."""
        db = self._session_factory()
        try:
            result = db.execute(
                update(QueueRow)
                .where(QueueRow.driver_id == driver_id, QueueRow.station_id == station_id)
                .values(status=STATUS_COMPLETED)
            )
            db.commit()
            logger.info("Marked %s queue row(s) completed for driver %s at station %s", result.rowcount, driver_id, station_id)
            return result.rowcount
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable(station_id, str(e)) from e
        finally:
            db.close()
