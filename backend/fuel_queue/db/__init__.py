from fuel_queue.db.base import Base
from fuel_queue.db.session import SessionLocal, build_engine, engine

__all__ = ["engine", "build_engine", "SessionLocal", "Base"]
