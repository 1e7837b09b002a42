from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

import room_codes
from auth import current_user_id
from backend import RoomStore, UserStore
from errors import ValidationError
from logging_config import get_logger
from routers.users import get_user_store
from schemas.rooms import (
    CreateRoomRequest,
    CreateRoomResponse,
    DebugRoomsResponse,
    RoomDetails,
    VerifiedRoom,
    VerifyRoomRequest,
    VerifyRoomResponse,
)
from sessions import SessionRegistry

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])


def get_room_store(request: Request) -> RoomStore:
    return request.app.state.room_store


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.relay.registry


@rooms_router.post("/create-room", status_code=201, response_model=CreateRoomResponse)
async def create_room(
    payload: CreateRoomRequest,
    user_id: str = Depends(current_user_id),
    rooms: RoomStore = Depends(get_room_store),
):
    logger.info(f"Create room request from user {user_id}, name: {payload.roomName!r}")
    room_name = (payload.roomName or "").strip()
    if not room_name:
        raise ValidationError("Room name is required")

    # Exhausted and DuplicateCode propagate to the error handler
    room = await room_codes.create_room(rooms, room_name, user_id)
    logger.info(f"Room {room.code} created successfully: name={room.room_name}, creator={room.creator}")
    return CreateRoomResponse(roomCode=room.code, roomName=room.room_name, message="Room created successfully")


@rooms_router.post("/verify-room", response_model=VerifyRoomResponse)
async def verify_room(
    payload: VerifyRoomRequest,
    user_id: str = Depends(current_user_id),
    rooms: RoomStore = Depends(get_room_store),
):
    clean_code = room_codes.normalize_code(payload.roomCode)
    logger.info(f"Verify room request from user {user_id} for code: {clean_code!r}")
    if not clean_code:
        raise ValidationError("Room code is required")

    room = await rooms.find_by_code(clean_code)
    if room is None:
        available = len(await rooms.list_all())
        logger.warning(f"Room not found for code: {clean_code} ({available} rooms exist)")
        return JSONResponse(status_code=404, content={
            "error": f'Room with code "{clean_code}" not found',
            "availableRooms": available,
        })

    if user_id in room.members:
        logger.debug(f"User {user_id} already in room {clean_code} members")
    else:
        room = await rooms.add_member(clean_code, user_id)
        logger.info(f"User {user_id} added to room {clean_code} members")

    return VerifyRoomResponse(
        room=VerifiedRoom(room_name=room.room_name, code=room.code, memberCount=room.member_count),
        message="Room found successfully",
    )


@rooms_router.get("/debug/rooms", response_model=DebugRoomsResponse)
async def debug_rooms(
    user_id: str = Depends(current_user_id),
    rooms: RoomStore = Depends(get_room_store),
    users: UserStore = Depends(get_user_store),
    registry: SessionRegistry = Depends(get_registry),
):
    logger.info(f"Debug rooms request from user: {user_id}")
    all_rooms = await rooms.list_all()
    live = registry.snapshot()

    details = []
    usernames = {}
    for room in all_rooms:
        if room.creator not in usernames:
            creator = await users.find_by_id(room.creator) if room.creator else None
            usernames[room.creator] = creator.username if creator else "Unknown"
        details.append(RoomDetails(
            code=room.code,
            name=room.room_name,
            creator=usernames[room.creator],
            memberCount=room.member_count,
            liveConnections=live.get(room.code, 0),
            created=room.created_at,
        ))

    logger.info(f"Found {len(details)} rooms in database")
    return DebugRoomsResponse(rooms=details, totalCount=len(details), timestamp=datetime.now().isoformat())
