import html

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import (
    MESSAGE_MAX_LENGTH,
    ROOM_MAX_LENGTH,
    ROOM_MIN_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
)

# Word characters plus space, dot and hyphen
NAME_PATTERN = r"^[\w .\-]+$"


class JoinRoomPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=USERNAME_MIN_LENGTH, max_length=USERNAME_MAX_LENGTH, pattern=NAME_PATTERN)
    room: str = Field(min_length=ROOM_MIN_LENGTH, max_length=ROOM_MAX_LENGTH, pattern=NAME_PATTERN)


class ChatMessagePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(min_length=1, max_length=MESSAGE_MAX_LENGTH)

    @field_validator("text")
    @classmethod
    def escape_html(cls, value: str) -> str:
        return html.escape(value)


class RoomUser(BaseModel):
    username: str


class RoomUsersPayload(BaseModel):
    room: str
    users: list[RoomUser]
