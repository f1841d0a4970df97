"""
Unit tests for the in-memory live-location relay.
"""
from unittest.mock import AsyncMock

import pytest

from homeserve.lib.metrics import get_metrics_collector
from homeserve.services.location_relay import LOCATION_UPDATE_EVENT, LocationRelay


def _connection() -> AsyncMock:
    return AsyncMock()


@pytest.mark.unit
async def test_publish_reaches_only_room_members():
    relay = LocationRelay()
    a, b, outsider = _connection(), _connection(), _connection()
    await relay.join_room("booking-1", a)
    await relay.join_room("booking-1", b)
    await relay.join_room("booking-2", outsider)

    delivered = await relay.publish_location("booking-1", 12.5, 77.5)

    assert delivered == 2
    expected = {"event": LOCATION_UPDATE_EVENT, "data": {"bookingId": "booking-1", "lat": 12.5, "lng": 77.5}}
    a.send_json.assert_awaited_once_with(expected)
    b.send_json.assert_awaited_once_with(expected)
    outsider.send_json.assert_not_awaited()


@pytest.mark.unit
async def test_publish_to_empty_room():
    relay = LocationRelay()
    assert await relay.publish_location("nobody-here", 0.0, 0.0) == 0
    assert get_metrics_collector().get_counter_value("location_updates_total", {"source": "http"}) == 1


@pytest.mark.unit
async def test_leave_room_stops_delivery():
    relay = LocationRelay()
    conn = _connection()
    await relay.join_room("booking-1", conn)
    await relay.leave_room("booking-1", conn)

    assert await relay.publish_location("booking-1", 1.0, 2.0) == 0
    assert relay.subscribers("booking-1") == set()


@pytest.mark.unit
async def test_leave_unknown_room_is_noop():
    relay = LocationRelay()
    await relay.leave_room("never-joined", _connection())


@pytest.mark.unit
async def test_leave_all_on_disconnect():
    relay = LocationRelay()
    conn, other = _connection(), _connection()
    await relay.join_room("booking-1", conn)
    await relay.join_room("booking-2", conn)
    await relay.join_room("booking-2", other)

    await relay.leave_all(conn)

    assert relay.subscribers("booking-1") == set()
    assert relay.subscribers("booking-2") == {other}


@pytest.mark.unit
async def test_failed_send_drops_connection():
    relay = LocationRelay()
    healthy = _connection()
    broken = _connection()
    broken.send_json.side_effect = RuntimeError("socket closed")
    await relay.join_room("booking-1", healthy)
    await relay.join_room("booking-1", broken)

    delivered = await relay.publish_location("booking-1", 3.0, 4.0, source="socket")

    assert delivered == 1
    assert relay.subscribers("booking-1") == {healthy}
    assert get_metrics_collector().get_counter_value("location_updates_total", {"source": "socket"}) == 1


@pytest.mark.unit
async def test_join_twice_delivers_once():
    relay = LocationRelay()
    conn = _connection()
    await relay.join_room("booking-1", conn)
    await relay.join_room("booking-1", conn)

    assert await relay.publish_location("booking-1", 1.0, 1.0) == 1
