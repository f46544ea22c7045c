"""
FastAPI + Socket.IO app entrypoint.

Run: uvicorn fuel_queue.main:asgi_app --host 0.0.0.0 --port 3000
asgi_app serves Socket.IO on /socket.io/ and hands everything else (HTTP routes,
lifespan) to the FastAPI app.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code reads the environment
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fuel_queue.api.routes import queue
from fuel_queue.config import Settings, settings
from fuel_queue.db.session import SessionLocal, engine
from fuel_queue.realtime.socket_handlers import QueueSocketHandlers
from fuel_queue.scheduler.reconcile_job import schedule_reconciliation
from fuel_queue.services.connection_registry import ConnectionRegistry
from fuel_queue.services.dispatch import SocketIODispatcher
from fuel_queue.services.queue_store import QueueSnapshotReader
from fuel_queue.services.reconciler import QueueReader, Reconciler

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    reader: QueueReader | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the app with its own registry, reconciler and Socket.IO server.
    Tests pass a fake reader and start_scheduler=False to drive cycles by hand.
    """
    app_settings = app_settings or settings
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=app_settings.allowed_origins)
    registry = ConnectionRegistry()
    reconciler = Reconciler(
        registry,
        reader or QueueSnapshotReader(SessionLocal),
        SocketIODispatcher(sio),
        app_settings.policy_config(),
        store_timeout_seconds=app_settings.store_timeout_seconds,
        store_workers=app_settings.store_workers,
        history_ttl=app_settings.history_ttl,
        station_idle_ttl=app_settings.station_idle_ttl,
    )
    QueueSocketHandlers(sio, registry).register()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = AsyncIOScheduler()
        if start_scheduler:
            schedule_reconciliation(scheduler, reconciler, app_settings)
            scheduler.start()
        app.state.scheduler = scheduler
        logger.info(
            "Queue notifier ready: tick=%sms near_turn_position=%s cooldown=%ss wait=max(%s, n*%s) origins=%s",
            app_settings.tick_interval_ms,
            app_settings.near_turn_position,
            app_settings.near_turn_cooldown_seconds,
            app_settings.wait_base_minutes,
            app_settings.wait_per_vehicle_minutes,
            app_settings.allowed_origins,
        )
        yield
        # Stop the timer before releasing store connections
        if scheduler.running:
            scheduler.shutdown(wait=False)
        reconciler.close()
        engine.dispose()

    app = FastAPI(title="Fuel Queue Notifier", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.sio = sio
    app.state.registry = registry
    app.state.reconciler = reconciler
    app.include_router(queue.router, tags=["queue"])
    return app


app = create_app()
asgi_app = socketio.ASGIApp(app.state.sio, app)
