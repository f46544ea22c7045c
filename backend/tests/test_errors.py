from fuel_queue.core.errors import InvalidRequest, StoreUnavailable, queue_error_to_http


def test_store_unavailable_maps_to_503() -> None:
    http = queue_error_to_http(StoreUnavailable("1", "timed out"))
    assert http.status_code == 503
    assert http.detail == "Queue store unavailable"


def test_other_errors_map_to_500_without_details() -> None:
    # InvalidRequest is answered on the socket, never over HTTP
    for exc in (InvalidRequest("station_id is required"), RuntimeError("boom")):
        http = queue_error_to_http(exc)
        assert http.status_code == 500
        assert http.detail == "Internal server error"


def test_store_unavailable_message_names_station() -> None:
    assert str(StoreUnavailable("7", "connection refused")) == "Queue store unavailable for station 7: connection refused"
    assert str(StoreUnavailable()) == "Queue store unavailable"
