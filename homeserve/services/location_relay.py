"""
Live-location relay: in-memory publish/subscribe keyed by booking id.

One relay is built at application startup and handed to the WebSocket
endpoint and the booking service. Delivery is at-most-once and
best-effort: no persistence and no replay to late joiners.
"""
import asyncio
from typing import Any, Dict, Protocol, Set

from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import get_metrics_collector


logger = get_logger(__name__)

LOCATION_UPDATE_EVENT = "location_update"


class Connection(Protocol):
    """Anything that can receive a JSON message (e.g. a starlette WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...


class LocationRelay:
    """
    Rooms of subscribed connections, one room per booking id.

    Subscription performs no authorization: any holder of a booking id may join.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[Connection]] = {}
        self._lock = asyncio.Lock()

    async def join_room(self, booking_id: str, connection: Connection) -> None:
        async with self._lock:
            self._rooms.setdefault(booking_id, set()).add(connection)
        logger.info("Connection joined room", extra={"room": booking_id})

    async def leave_room(self, booking_id: str, connection: Connection) -> None:
        async with self._lock:
            members = self._rooms.get(booking_id)
            if members is None:
                return
            members.discard(connection)
            if not members:
                del self._rooms[booking_id]
        logger.info("Connection left room", extra={"room": booking_id})

    async def leave_all(self, connection: Connection) -> None:
        """Drop a connection from every room (on disconnect)."""
        async with self._lock:
            for booking_id in list(self._rooms):
                members = self._rooms[booking_id]
                members.discard(connection)
                if not members:
                    del self._rooms[booking_id]

    def subscribers(self, booking_id: str) -> Set[Connection]:
        return set(self._rooms.get(booking_id, ()))

    async def publish_location(self, booking_id: str, lat: float, lng: float, source: str = "http") -> int:
        """
        Fan a coordinate pair out to the booking's room.

        Returns:
            Number of connections that accepted the message
        """
        message = {
            "event": LOCATION_UPDATE_EVENT,
            "data": {"bookingId": booking_id, "lat": lat, "lng": lng},
        }
        delivered = 0
        dead = []

        for connection in self.subscribers(booking_id):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Dropping connection after failed send: {e}",
                    extra={"room": booking_id},
                )
                dead.append(connection)

        for connection in dead:
            await self.leave_room(booking_id, connection)

        get_metrics_collector().increment_location_update(source)
        return delivered
