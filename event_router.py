"""Per-connection protocol state machine.

A connection moves DISCONNECTED -> CONNECTED -> JOINED -> DISCONNECTED.
Handlers never await: each one finishes its registry mutation and hands
every outbound frame to the transport before the next event is processed,
which is what keeps per-room delivery in processing order.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from broadcast import BroadcastTransport
from errors import ErrorCode, ProtocolError
from formatter import MessageFormatter, NoticeKind
from logging_config import get_logger
from registry import PresenceRegistry, Session
from result import Err
from schemas.events import RoomUser, RoomUsersPayload
from validation import validate_chat_message, validate_join

logger = get_logger(__name__)

# client -> server
JOIN_ROOM = "joinRoom"
CHAT_MESSAGE = "chatMessage"
LEAVE_ROOM = "leaveRoom"

# server -> client
WELCOME_MESSAGE = "welcomeMessage"
MESSAGE = "message"
ROOM_USERS = "roomUsers"
JOIN_ERROR = "joinError"
MESSAGE_ERROR = "messageError"


@dataclass(frozen=True)
class Connected:
    connection_id: str


@dataclass(frozen=True)
class Joined:
    session: Session


ConnectionState = Union[Connected, Joined]


class EventRouter:
    def __init__(self, registry: PresenceRegistry, formatter: MessageFormatter, transport: BroadcastTransport):
        self.registry = registry
        self.formatter = formatter
        self.transport = transport
        # Protocol state only; who is in which room lives in the registry
        self._states: Dict[str, ConnectionState] = {}

    def state_of(self, connection_id: str) -> Optional[ConnectionState]:
        """None means DISCONNECTED."""
        return self._states.get(connection_id)

    def connect(self, connection_id: str):
        self._states[connection_id] = Connected(connection_id)
        logger.info(f"Connection {connection_id} connected")

    def dispatch(self, connection_id: str, event: Any, payload: Any = None):
        if event == JOIN_ROOM:
            self.join_room(connection_id, payload)
        elif event == CHAT_MESSAGE:
            self.chat_message(connection_id, payload)
        elif event == LEAVE_ROOM:
            self.leave_room(connection_id)
        else:
            logger.warning(f"Ignoring unknown event {event!r} from connection {connection_id}")

    def join_room(self, connection_id: str, payload: Any):
        state = self._states.get(connection_id)
        if state is None:
            logger.warning(f"joinRoom from unregistered connection {connection_id}, ignoring")
            return
        if isinstance(state, Joined):
            self._reject_join(connection_id, ProtocolError(
                ErrorCode.ALREADY_JOINED, f"Already joined room {state.session.room}",
            ))
            return

        validated = validate_join(payload)
        if isinstance(validated, Err):
            self._reject_join(connection_id, validated.error)
            return
        request = validated.value

        joined = self.registry.join(connection_id, request.username, request.room)
        if isinstance(joined, Err):
            self._reject_join(connection_id, joined.error)
            return
        session = joined.value

        self._states[connection_id] = Joined(session)
        self.transport.join_group(connection_id, session.room)
        welcome = self.formatter.system_notice(NoticeKind.WELCOME, session.room)
        self.transport.send(connection_id, WELCOME_MESSAGE, welcome.model_dump())
        notice = self.formatter.system_notice(NoticeKind.USER_JOINED, session.room, session.username)
        self.transport.broadcast(session.room, MESSAGE, notice.model_dump(), exclude=connection_id)
        self._broadcast_room_users(session.room)

    def chat_message(self, connection_id: str, payload: Any):
        state = self._states.get(connection_id)
        if not isinstance(state, Joined):
            logger.debug(f"Ignoring chatMessage from connection {connection_id}: {ErrorCode.NOT_JOINED.value}")
            return

        validated = validate_chat_message(payload)
        if isinstance(validated, Err):
            self.transport.send(connection_id, MESSAGE_ERROR, validated.error.to_payload())
            return

        session = self.registry.get_by_id(connection_id)
        if session is None:
            # Disconnect already in flight
            logger.debug(f"Ignoring chatMessage from connection {connection_id}: {ErrorCode.UNKNOWN_ROOM.value}")
            return

        record = self.formatter.format(session.username, validated.value, session.room)
        self.transport.broadcast(session.room, MESSAGE, record.model_dump())
        logger.debug(f"Broadcast message from {session.username} to room {session.room}")

    def leave_room(self, connection_id: str):
        """Explicit leave: JOINED -> CONNECTED."""
        state = self._states.get(connection_id)
        if not isinstance(state, Joined):
            logger.debug(f"Ignoring leaveRoom from connection {connection_id}: {ErrorCode.NOT_JOINED.value}")
            return
        self._states[connection_id] = Connected(connection_id)
        self._release(connection_id)

    def disconnect(self, connection_id: str):
        state = self._states.pop(connection_id, None)
        logger.info(f"Connection {connection_id} disconnected")
        if isinstance(state, Joined):
            self._release(connection_id)

    def _release(self, connection_id: str):
        session = self.registry.leave(connection_id)
        if session is None:
            return
        self.transport.leave_group(connection_id, session.room)
        if self.registry.get_room_member_count(session.room) == 0:
            return
        notice = self.formatter.system_notice(NoticeKind.USER_LEFT, session.room, session.username)
        self.transport.broadcast(session.room, MESSAGE, notice.model_dump())
        self._broadcast_room_users(session.room)

    def _reject_join(self, connection_id: str, error: ProtocolError):
        logger.info(f"Join rejected for connection {connection_id}: {error.code.value} {error.message}")
        self.transport.send(connection_id, JOIN_ERROR, error.to_payload())

    def _broadcast_room_users(self, room: str):
        users = RoomUsersPayload(
            room=room,
            users=[RoomUser(username=member.username) for member in self.registry.get_room_members(room)],
        )
        self.transport.broadcast(room, ROOM_USERS, users.model_dump())
