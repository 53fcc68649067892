"""Builds the timestamped records that clients render as chat lines."""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict

from constants import APP_NAME, DISPLAY_TIMEZONE, SYSTEM_USERNAME


class NoticeKind(str, Enum):
    WELCOME = "welcome"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"


class MessageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    text: str
    time: str
    room: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageFormatter:
    """Produces MessageRecords with one timestamp rule for every caller.

    ``text`` is taken as already sanitized; no escaping happens here.
    ``clock`` must return an aware datetime and exists so tests can pin time.
    """

    def __init__(self, tz_name: str = DISPLAY_TIMEZONE, clock: Callable[[], datetime] = _utc_now):
        self.tz = ZoneInfo(tz_name)
        self._clock = clock

    def format_timestamp(self, moment: datetime) -> str:
        # h:mm a, e.g. "3:07 pm"
        local = moment.astimezone(self.tz)
        hour = local.hour % 12 or 12
        suffix = "am" if local.hour < 12 else "pm"
        return f"{hour}:{local.minute:02d} {suffix}"

    def format(self, username: str, text: str, room: str) -> MessageRecord:
        return MessageRecord(
            username=username,
            text=text,
            time=self.format_timestamp(self._clock()),
            room=room,
        )

    def system_notice(self, kind: NoticeKind, room: str, username: Optional[str] = None) -> MessageRecord:
        kind = NoticeKind(kind)
        if kind is NoticeKind.WELCOME:
            text = f"Welcome to {APP_NAME}!"
        elif username is None:
            raise ValueError(f"{kind.value} notice requires a username")
        elif kind is NoticeKind.USER_JOINED:
            text = f"{username} has joined the room"
        else:
            text = f"{username} has left the room"
        return self.format(SYSTEM_USERNAME, text, room)
