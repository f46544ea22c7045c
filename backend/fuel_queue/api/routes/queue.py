"""
Queue operator API: complete a driver's service, legacy forced notice, health.

Called out-of-band (operator terminal), not by drivers. Response bodies keep the
{success, message} / {error} shape the terminal already parses.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fuel_queue.core.constants import RECONCILE_JOB_ID
from fuel_queue.core.errors import MSG_DRIVER_NOT_CONNECTED, STATUS_NOT_FOUND, QueueError, queue_error_to_http
from fuel_queue.services.reconciler import Reconciler

router = APIRouter()
logger = logging.getLogger(__name__)


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


class _IdModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def id_to_str(cls, v: Any) -> Any:
        # terminals send numeric ids; the registry keys on strings
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v


class CompleteServiceBody(_IdModel):
    driver_id: str = Field(..., alias="driverId", min_length=1, max_length=64)
    station_id: str = Field(..., alias="stationId", min_length=1, max_length=64)


class NotifyBody(_IdModel):
    driver_id: str = Field(..., alias="driverId", min_length=1, max_length=64)


def _not_connected() -> JSONResponse:
    return JSONResponse(status_code=STATUS_NOT_FOUND, content={"error": MSG_DRIVER_NOT_CONNECTED})


@router.post("/complete-service")
async def complete_service(body: CompleteServiceBody, reconciler: Reconciler = Depends(get_reconciler)):
    """
    Mark the driver's queue entry completed and push queue_completed to the driver.
    404 when the driver has no live connection (the entry is still marked completed).
    503 when the store failed; the entry was not marked completed and the call can be retried.
    """
    try:
        delivered = await reconciler.complete_service(body.driver_id, body.station_id)
    except QueueError as e:
        logger.error("Service completion error for driver %s: %s", body.driver_id, e)
        http = queue_error_to_http(e)
        return JSONResponse(status_code=http.status_code, content={"error": http.detail})
    if not delivered:
        return _not_connected()
    return {"success": True, "message": "Service completed"}


@router.post("/notify")
async def notify_driver(body: NotifyBody, reconciler: Reconciler = Depends(get_reconciler)):
    """Legacy: push a near-turn notice to one driver now, ignoring the cooldown."""
    if not await reconciler.force_notify(body.driver_id):
        return _not_connected()
    return {"success": True, "message": "Notification sent"}


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    reconciler: Reconciler = request.app.state.reconciler
    out: dict[str, Any] = {"status": "ok", "reconciler": reconciler.status()}
    scheduler = getattr(request.app.state, "scheduler", None)
    job = scheduler.get_job(RECONCILE_JOB_ID) if scheduler else None
    next_run = getattr(job, "next_run_time", None) if job else None
    out["next_tick_at"] = next_run.isoformat() if next_run else None
    return out
