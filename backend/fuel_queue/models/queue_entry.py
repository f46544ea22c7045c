"""Queue row: one driver's place in one station's fuel queue. Table is owned externally; no migrations ship."""
from sqlalchemy import Column, Integer, String

from fuel_queue.db.base import Base


class QueueRow(Base):
    __tablename__ = "queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    station_id = Column(String(64), nullable=False, index=True)
    queue_number = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="waiting")  # waiting | serving | completed | ...
    driver_id = Column(String(64), nullable=True, index=True)  # NULL for walk-ins without the app
