from datetime import timedelta

from conftest import T0, entry
from fuel_queue.services.notification_policy import (
    EventKind,
    Notice,
    NotificationHistory,
    PolicyConfig,
    decide,
    estimate_wait,
    order_entries,
)


def _kinds(decision):
    return [(n.driver_id, n.kind) for n in decision.notices]


def test_order_is_serving_then_waiting_then_other_by_id() -> None:
    rows = [
        entry(5, "completed", "e"),
        entry(4, "waiting", "d"),
        entry(2, "waiting", "b"),
        entry(9, "serving", "s"),
        entry(1, "cancelled", "x"),
    ]
    assert [e.id for e in order_entries(rows)] == [9, 2, 4, 1, 5]


def test_order_ignores_input_order() -> None:
    rows = [entry(3), entry(1), entry(2)]
    assert order_entries(rows) == order_entries(list(reversed(rows)))


def test_positions_count_waiting_entries_only() -> None:
    rows = [entry(1, "serving", "s"), entry(2, "waiting", "a"), entry(3, "waiting", "b"), entry(4, "completed", "c")]
    decision = decide(rows, T0, {})
    assert decision.positions == {"a": 1, "b": 2}


def test_your_turn_for_first_waiting_driver() -> None:
    rows = [entry(1, "serving", "s"), entry(2, "waiting", "a", queue_number=42)]
    decision = decide(rows, T0, {})
    [notice] = decision.notices
    assert notice.kind == EventKind.YOUR_TURN
    assert notice.driver_id == "a"
    assert notice.to_payload() == {"driverId": "a", "stationId": "1", "queueNumber": 42}


def test_near_turn_for_third_waiting_driver_records_history() -> None:
    rows = [entry(i, "waiting", f"d{i}") for i in range(1, 5)]
    decision = decide(rows, T0, {})
    assert ("d3", EventKind.NEAR_TURN) in _kinds(decision)
    assert decision.history_update == {"d3": T0}
    near = [n for n in decision.notices if n.kind == EventKind.NEAR_TURN][0]
    assert near.to_payload() == {"driverId": "d3", "position": 3, "stationId": "1"}


def test_near_turn_cooldown_window() -> None:
    rows = [entry(i, "waiting", f"d{i}") for i in range(1, 4)]
    history = NotificationHistory()
    history.apply({"d3": T0})

    just_inside = decide(rows, T0 + timedelta(minutes=9, seconds=59), history)
    assert ("d3", EventKind.NEAR_TURN) not in _kinds(just_inside)
    assert just_inside.history_update == {}

    exactly = decide(rows, T0 + timedelta(minutes=10), history)
    assert ("d3", EventKind.NEAR_TURN) not in _kinds(exactly)

    just_after = decide(rows, T0 + timedelta(minutes=10, seconds=1), history)
    assert ("d3", EventKind.NEAR_TURN) in _kinds(just_after)


def test_configurable_threshold_and_cooldown() -> None:
    config = PolicyConfig(near_turn_position=2, near_turn_cooldown=timedelta(seconds=30))
    rows = [entry(1, "waiting", "a"), entry(2, "waiting", "b")]
    history = {"b": T0}
    assert ("b", EventKind.NEAR_TURN) not in _kinds(decide(rows, T0 + timedelta(seconds=20), history, config))
    assert ("b", EventKind.NEAR_TURN) in _kinds(decide(rows, T0 + timedelta(seconds=31), history, config))


def test_walk_ins_without_driver_get_no_notice_but_keep_their_place() -> None:
    rows = [entry(1, "waiting", None), entry(2, "waiting", "b"), entry(3, "waiting", "c")]
    decision = decide(rows, T0, {})
    assert _kinds(decision) == [("c", EventKind.NEAR_TURN)]
    assert decision.positions == {"b": 2, "c": 3}


def test_wait_formula() -> None:
    assert estimate_wait(0) == 5
    assert estimate_wait(2) == 5
    assert estimate_wait(10) == 20
    assert estimate_wait(10, PolicyConfig(wait_base_minutes=0, wait_per_vehicle_minutes=3)) == 30


def test_snapshot_payload() -> None:
    rows = [entry(1, "serving", "s", queue_number=17), entry(2, "waiting", "a"), entry(3, "waiting", "b")]
    assert decide(rows, T0, {}).snapshot.to_payload() == {
        "queue_count": 2,
        "current_number": 17,
        "estimated_wait": 5,
    }


def test_snapshot_without_serving_entry() -> None:
    snapshot = decide([], T0, {}).snapshot
    assert snapshot.current_serving_number == "-"
    assert snapshot.waiting_count == 0
    assert snapshot.estimated_wait_minutes == 5


def test_history_prune() -> None:
    history = NotificationHistory()
    history.apply({"old": T0, "new": T0 + timedelta(minutes=50)})
    removed = history.prune(T0 + timedelta(minutes=61), timedelta(minutes=60))
    assert removed == 1
    assert history.last_near_turn("old") is None
    assert history.last_near_turn("new") is not None
    assert len(history) == 1


def test_notice_payload_per_kind() -> None:
    near = Notice("c", EventKind.NEAR_TURN, "1", position=3)
    turn = Notice("a", EventKind.YOUR_TURN, "1", queue_number=101)
    done = Notice("a", EventKind.QUEUE_COMPLETED, "1", completed_at=T0)
    assert near.to_payload() == {"driverId": "c", "position": 3, "stationId": "1"}
    assert turn.to_payload() == {"driverId": "a", "stationId": "1", "queueNumber": 101}
    assert done.to_payload() == {"driverId": "a", "stationId": "1", "completedAt": T0.isoformat()}
