"""
Centralized error handling for the queue engine and its HTTP boundary.

The core raises StoreUnavailable (recoverable, mapped to 503). InvalidRequest is raised
and answered inside the Socket.IO handlers; HTTP bodies are validated by pydantic (422).
An unreachable driver is not an error: lookups return None and calls return False.
"""
from __future__ import annotations

from typing import Callable

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

STATUS_NOT_FOUND = 404
STATUS_SERVICE_UNAVAILABLE = 503  # store down or query timed out
STATUS_INTERNAL_ERROR = 500

MSG_DRIVER_NOT_CONNECTED = "Driver not connected"
MSG_STORE_UNAVAILABLE = "Queue store unavailable"
MSG_INTERNAL_ERROR = "Internal server error"


class QueueError(Exception):
    """Base class for queue engine errors."""


class StoreUnavailable(QueueError):
    """The queue store could not be reached (connection error, query error or timeout)."""

    def __init__(self, station_id: str | None = None, reason: str = ""):
        self.station_id = station_id
        self.reason = reason
        where = f" for station {station_id}" if station_id is not None else ""
        super().__init__(f"Queue store unavailable{where}: {reason}" if reason else f"Queue store unavailable{where}")


class InvalidRequest(QueueError):
    """Malformed inbound watch/notify/complete call. Rejected at the transport boundary."""


# ---------------------------------------------------------------------------
# Error rules: (predicate, status_code, detail_message)
# Add new rules here instead of scattering checks in routes.
# ---------------------------------------------------------------------------

def _is_store_error(exc: Exception) -> bool:
    return isinstance(exc, StoreUnavailable)


# List of (predicate, status_code, detail). First match wins.
QUEUE_ERROR_RULES: list[tuple[Callable[[Exception], bool], int, str | None]] = [
    (_is_store_error, STATUS_SERVICE_UNAVAILABLE, MSG_STORE_UNAVAILABLE),
]


def queue_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from the reconciler into an HTTPException.
    Uses QUEUE_ERROR_RULES for known error types; otherwise returns 500 with a generic message.
    """
    for predicate, status_code, detail in QUEUE_ERROR_RULES:
        if predicate(exc):
            return HTTPException(status_code=status_code, detail=detail or str(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=MSG_INTERNAL_ERROR)
