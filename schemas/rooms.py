from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Set


class Room(BaseModel):
    code: str
    room_name: str
    creator: str
    members: Set[str] = Field(default_factory=set)
    canvas_data: Optional[str] = ""
    created_at: datetime

    @property
    def member_count(self) -> int:
        return len(self.members)

class CreateRoomRequest(BaseModel):
    roomName: Optional[str] = None

class CreateRoomResponse(BaseModel):
    roomCode: str
    roomName: str
    message: str

class VerifyRoomRequest(BaseModel):
    roomCode: Optional[str] = None

class VerifiedRoom(BaseModel):
    room_name: str
    code: str
    memberCount: int

class VerifyRoomResponse(BaseModel):
    room: VerifiedRoom
    message: str

class RoomDetails(BaseModel):
    code: str
    name: str
    creator: str
    memberCount: int
    liveConnections: int
    created: datetime

class DebugRoomsResponse(BaseModel):
    rooms: list[RoomDetails]
    totalCount: int
    timestamp: str
