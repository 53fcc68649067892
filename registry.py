from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from constants import ROOM_MAX_LENGTH, ROOM_MIN_LENGTH, USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH
from errors import ErrorCode, ProtocolError, RegistryCorruptedError
from logging_config import get_logger
from result import Err, Ok, Result

logger = get_logger(__name__)


def normalize_username(username: str) -> str:
    return username.lower()


@dataclass(frozen=True)
class Session:
    connection_id: str
    username: str
    room: str
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RoomMembers:
    # connection_id -> Session, in join order
    sessions: Dict[str, Session] = field(default_factory=dict)
    # normalized username -> connection_id
    usernames: Dict[str, str] = field(default_factory=dict)


class PresenceRegistry:
    """In-memory directory of active sessions and the rooms they sit in.

    The session map is authoritative; the per-room index is derived from it
    and updated in the same step on every join and leave. Nothing in here
    awaits, so with a single event loop each call runs to completion before
    any other event is handled.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._rooms: Dict[str, RoomMembers] = {}
        logger.info("Initialized PresenceRegistry")

    def join(self, connection_id: str, username: str, room: str) -> Result[Session, ProtocolError]:
        if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
            return Err(ProtocolError(
                ErrorCode.INVALID_INPUT,
                f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters",
            ))
        if not ROOM_MIN_LENGTH <= len(room) <= ROOM_MAX_LENGTH:
            return Err(ProtocolError(
                ErrorCode.INVALID_INPUT,
                f"Room must be {ROOM_MIN_LENGTH}-{ROOM_MAX_LENGTH} characters",
            ))

        existing = self._sessions.get(connection_id)
        if existing is not None:
            logger.warning(f"Connection {connection_id} already joined room {existing.room} as {existing.username}")
            return Err(ProtocolError(ErrorCode.ALREADY_JOINED, f"Already joined room {existing.room}"))

        if not self.is_username_available(room, username):
            logger.info(f"Username '{username}' already taken in room {room}")
            return Err(ProtocolError(
                ErrorCode.USERNAME_TAKEN,
                f"Username '{username}' is already taken in this room. Please choose a different name.",
            ))

        session = Session(connection_id=connection_id, username=username, room=room)
        members = self._rooms.get(room)
        if members is None:
            members = RoomMembers()
            self._rooms[room] = members
            logger.info(f"Room {room} created")
        self._sessions[connection_id] = session
        members.sessions[connection_id] = session
        members.usernames[normalize_username(username)] = connection_id
        logger.info(f"User {username} ({connection_id}) joined room {room} (members: {len(members.sessions)})")
        return Ok(session)

    def leave(self, connection_id: str) -> Optional[Session]:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            logger.debug(f"Leave for unknown connection {connection_id}, nothing to do")
            return None

        members = self._rooms.get(session.room)
        if members is None or members.sessions.pop(connection_id, None) is None:
            raise RegistryCorruptedError(
                f"Session {connection_id} was not indexed under room {session.room}"
            )
        if members.usernames.pop(normalize_username(session.username), None) != connection_id:
            raise RegistryCorruptedError(
                f"Username index for room {session.room} did not point at {connection_id}"
            )

        logger.info(f"User {session.username} ({connection_id}) left room {session.room}")
        if not members.sessions:
            del self._rooms[session.room]
            logger.info(f"Room {session.room} is empty, removing it")
        return session

    def get_by_id(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def get_room_members(self, room: str) -> List[Session]:
        """Snapshot of the room's sessions in join order."""
        members = self._rooms.get(room)
        if members is None:
            return []
        return list(members.sessions.values())

    def get_room_member_count(self, room: str) -> int:
        members = self._rooms.get(room)
        return len(members.sessions) if members else 0

    def is_username_available(self, room: str, username: str) -> bool:
        members = self._rooms.get(room)
        if members is None:
            return True
        return normalize_username(username) not in members.usernames

    def list_active_rooms(self) -> Set[str]:
        return set(self._rooms)

    def session_count(self) -> int:
        return len(self._sessions)
