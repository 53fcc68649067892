import asyncio
from typing import Any, Dict, Optional, Protocol

from logging_config import get_logger

logger = get_logger(__name__)


def make_frame(event: str, payload: Any) -> dict:
    """Wire shape of every outbound event."""
    return {"type": event, "payload": payload}


class BroadcastTransport(Protocol):
    """How the event router reaches connections.

    Every call is fire-and-forget: it must not await or block, so the router
    can finish handling an event before any other event is looked at.
    """

    def send(self, connection_id: str, event: str, payload: Any) -> None: ...

    def broadcast(self, room: str, event: str, payload: Any, exclude: Optional[str] = None) -> None: ...

    def join_group(self, connection_id: str, room: str) -> None: ...

    def leave_group(self, connection_id: str, room: str) -> None: ...


class LocalBroadcast:
    """In-process transport: one outbox queue per connection, groups per room.

    The WebSocket endpoint owns a writer task per connection that drains its
    outbox, so frames reach each socket in the order they were enqueued.
    """

    def __init__(self):
        # connection_id -> outbox
        self._outboxes: Dict[str, asyncio.Queue] = {}
        # room -> {connection_id: None}, kept in join order
        self._groups: Dict[str, Dict[str, None]] = {}

    def register(self, connection_id: str) -> asyncio.Queue:
        outbox: asyncio.Queue = asyncio.Queue()
        self._outboxes[connection_id] = outbox
        logger.debug(f"Registered outbox for connection {connection_id} (connections: {len(self._outboxes)})")
        return outbox

    def unregister(self, connection_id: str):
        self._outboxes.pop(connection_id, None)
        for room in [room for room, members in self._groups.items() if connection_id in members]:
            self.leave_group(connection_id, room)
        logger.debug(f"Unregistered outbox for connection {connection_id}")

    def join_group(self, connection_id: str, room: str) -> None:
        self._groups.setdefault(room, {})[connection_id] = None
        logger.debug(f"Connection {connection_id} subscribed to room {room}")

    def leave_group(self, connection_id: str, room: str) -> None:
        members = self._groups.get(room)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._groups[room]
        logger.debug(f"Connection {connection_id} unsubscribed from room {room}")

    def group_members(self, room: str) -> list:
        return list(self._groups.get(room, {}))

    def send(self, connection_id: str, event: str, payload: Any) -> None:
        self._deliver(connection_id, make_frame(event, payload))

    def broadcast(self, room: str, event: str, payload: Any, exclude: Optional[str] = None) -> None:
        self.deliver_to_group(room, make_frame(event, payload), exclude)

    def recipients_of(self, room: str, exclude: Optional[str] = None) -> list:
        return [conn_id for conn_id in self.group_members(room) if conn_id != exclude]

    def deliver_to_group(self, room: str, frame: dict, exclude: Optional[str] = None):
        self.deliver_to(self.recipients_of(room, exclude), frame)

    def deliver_to(self, connection_ids: list, frame: dict):
        logger.debug(f"Delivering '{frame['type']}' to {len(connection_ids)} connections")
        for conn_id in connection_ids:
            self._deliver(conn_id, frame)

    def _deliver(self, connection_id: str, frame: dict):
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            logger.debug(f"Dropping '{frame['type']}' for unknown connection {connection_id}")
            return
        outbox.put_nowait(frame)
