"""
Database session and engine.

The queue table is owned by the operator application; this service only reads it
(and flips rows to completed). Queries carry a bounded server-side timeout on Postgres
so one slow station cannot hold a connection for a whole tick.
"""
import math

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fuel_queue.config import settings


def build_engine(database_url: str, store_timeout_seconds: float | None = None) -> Engine:
    """
    Create an engine for the queue store. SQLite (tests, local dev) gets a single shared connection.
    On Postgres the store timeout also caps the statement, the connect and the wait for a pooled
    connection, so a worker thread stuck on a dead store is released within a few timeouts.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {}
    pool_timeout = 30.0
    if store_timeout_seconds and database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(store_timeout_seconds * 1000)}"
        # libpq takes whole seconds and treats anything below 2 as 2
        connect_args["connect_timeout"] = max(2, math.ceil(store_timeout_seconds))
        pool_timeout = store_timeout_seconds
    return create_engine(
        database_url,
        pool_size=8,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=pool_timeout,
        connect_args=connect_args,
    )


engine = build_engine(settings.database_url, settings.store_timeout_seconds)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

