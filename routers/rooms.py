from fastapi import APIRouter, HTTPException, Query, Request

from logging_config import get_logger
from registry import PresenceRegistry
from schemas.rooms import (
    ActiveRoomsResponse,
    OnlineUser,
    RoomSummary,
    RoomUsersResponse,
    UsernameAvailabilityResponse,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_registry(request: Request) -> PresenceRegistry:
    return request.app.state.registry


@rooms_router.get("/", response_model=ActiveRoomsResponse)
async def list_rooms(request: Request):
    registry = get_registry(request)
    rooms = sorted(registry.list_active_rooms())
    logger.debug(f"Active rooms request: {len(rooms)} rooms")
    return ActiveRoomsResponse(
        rooms=[RoomSummary(room=room, online_users_count=registry.get_room_member_count(room)) for room in rooms]
    )


@rooms_router.get("/{room}/users", response_model=RoomUsersResponse)
async def get_room_users(room: str, request: Request):
    """
    Current members of a room in join order.

    Rooms only exist while someone is in them, so an empty room is a 404.
    """
    registry = get_registry(request)
    members = registry.get_room_members(room)
    if not members:
        logger.info(f"Room users request failed: Room {room} not active")
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomUsersResponse(
        room=room,
        online_users_count=len(members),
        online_users=[
            OnlineUser(username=session.username, joined_at=session.joined_at.isoformat())
            for session in members
        ],
    )


@rooms_router.get("/{room}/username-available", response_model=UsernameAvailabilityResponse)
async def check_username(
    room: str,
    request: Request,
    username: str = Query(..., min_length=1, description="Display name to check (case-insensitive)"),
):
    registry = get_registry(request)
    available = registry.is_username_available(room, username.strip())
    logger.debug(f"Username availability for '{username}' in room {room}: {available}")
    return UsernameAvailabilityResponse(room=room, username=username, available=available)
