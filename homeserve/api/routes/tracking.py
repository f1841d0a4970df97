"""
Live-tracking WebSocket.

Clients send `{"event": ..., "data": ...}` envelopes:
- join_room        data: booking id string
- leave_room       data: booking id string
- update_location  data: {bookingId, location: {lat, lng}}

`update_location` is relayed to the booking's room as `location_update`;
it does not touch the database.
"""
from typing import Any, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from homeserve.lib.logging import get_logger
from homeserve.services.location_relay import LocationRelay


logger = get_logger(__name__)
router = APIRouter(tags=["tracking"])


def _room_id(data: Any) -> Optional[str]:
    if isinstance(data, str) and data:
        return data
    if isinstance(data, dict) and data.get("bookingId"):
        return str(data["bookingId"])
    return None


def _coordinates(data: Any) -> Optional[Tuple[str, float, float]]:
    if not isinstance(data, dict):
        return None
    booking_id = data.get("bookingId")
    location = data.get("location") or {}
    try:
        return str(booking_id), float(location["lat"]), float(location["lng"])
    except (KeyError, TypeError, ValueError):
        return None


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


@router.websocket("/ws/tracking")
async def tracking_socket(websocket: WebSocket) -> None:
    relay: LocationRelay = websocket.app.state.location_relay
    await websocket.accept()

    try:
        while True:
            try:
                envelope = await websocket.receive_json()
            except ValueError:
                await _send_error(websocket, "Malformed message")
                continue

            if not isinstance(envelope, dict):
                await _send_error(websocket, "Malformed message")
                continue

            event = envelope.get("event")
            data = envelope.get("data")

            if event in ("join_room", "leave_room"):
                room = _room_id(data)
                if room is None:
                    await _send_error(websocket, "Booking id required")
                    continue
                if event == "join_room":
                    await relay.join_room(room, websocket)
                else:
                    await relay.leave_room(room, websocket)
                await websocket.send_json({"event": event, "data": {"bookingId": room}})

            elif event == "update_location":
                parsed = _coordinates(data)
                if parsed is None or parsed[0] in ("", "None"):
                    await _send_error(websocket, "bookingId and location {lat, lng} required")
                    continue
                booking_id, lat, lng = parsed
                await relay.publish_location(booking_id, lat, lng, source="socket")

            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        logger.info("Tracking socket disconnected")
    finally:
        await relay.leave_all(websocket)
