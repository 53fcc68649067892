from pydantic import BaseModel


class RoomSummary(BaseModel):
    room: str
    online_users_count: int


class ActiveRoomsResponse(BaseModel):
    rooms: list[RoomSummary]


class OnlineUser(BaseModel):
    username: str
    joined_at: str


class RoomUsersResponse(BaseModel):
    room: str
    online_users_count: int
    online_users: list[OnlineUser]


class UsernameAvailabilityResponse(BaseModel):
    room: str
    username: str
    available: bool
