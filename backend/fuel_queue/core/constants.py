"""
Centralized constants for the scheduler and the Socket.IO wire protocol.

Event and room names are what the driver/dashboard UI listens for; change them here
instead of scattering literals across handlers and the reconciler.
"""

# Scheduler job IDs (must match ids used in scheduler/reconcile_job.py add_job)
RECONCILE_JOB_ID = "queue_reconcile"
SWEEP_JOB_ID = "queue_state_sweep"

# Queue table status values. Anything else sorts after these.
STATUS_SERVING = "serving"
STATUS_WAITING = "waiting"
STATUS_COMPLETED = "completed"

# ORDER BY priority: serving first, then waiting, then everything else
STATUS_PRIORITY = {
    STATUS_SERVING: 1,
    STATUS_WAITING: 2,
}
STATUS_PRIORITY_OTHER = 3

# Shown as current_number when nobody is being served
NO_CURRENT_NUMBER = "-"

# Inbound Socket.IO events
EVENT_JOIN_MONITOR = "join_monitor"
EVENT_MONITOR_JOINED = "monitor_joined"
EVENT_MONITOR_ERROR = "monitor_error"

# Outbound Socket.IO events
EVENT_NEAR_TURN = "driver_third_notice"
EVENT_YOUR_TURN = "your_turn_notice"
EVENT_QUEUE_COMPLETED = "queue_completed"
STATION_UPDATE_EVENT_PREFIX = "queue_update_"
STATION_ROOM_PREFIX = "station_"


def station_room(station_id: str) -> str:
    return f"{STATION_ROOM_PREFIX}{station_id}"


def station_update_event(station_id: str) -> str:
    return f"{STATION_UPDATE_EVENT_PREFIX}{station_id}"
