"""Live connections and the rooms they are joined to.

Everything here is process-local and synchronous. Handlers must never hold a
registry mutation across an ``await``.
"""
import enum
import uuid
from dataclasses import dataclass, field
from typing import Dict, Hashable, Optional, Set

from fastapi import WebSocket

from room_codes import normalize_code
from schemas.messages import envelope


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


@dataclass(eq=False)
class Connection:
    """One websocket. Hashed by identity so it can live in registry sets."""
    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ConnectionState = ConnectionState.CONNECTED
    room_code: Optional[str] = None

    @property
    def is_joined(self) -> bool:
        return self.state is ConnectionState.JOINED

    def mark_joined(self, code: str):
        self.state = ConnectionState.JOINED
        self.room_code = code

    def mark_disconnected(self):
        self.state = ConnectionState.DISCONNECTED
        self.room_code = None

    async def send(self, event: str, payload=None):
        await self.websocket.send_json(envelope(event, payload))


class SessionRegistry:
    def __init__(self):
        # Format: {room_code: {connection, ...}}
        self._rooms: Dict[str, Set[Hashable]] = {}
        # Format: {connection: room_code}
        self._joined: Dict[Hashable, str] = {}

    def join(self, code: str, handle: Hashable) -> Optional[str]:
        """Add `handle` to room `code`.

        A handle belongs to at most one room, so joining a second room leaves the
        first. Returns the room it left, if any.
        """
        code = normalize_code(code)
        previous = self._joined.get(handle)
        if previous == code:
            return None
        if previous is not None:
            self._discard(previous, handle)
        self._rooms.setdefault(code, set()).add(handle)
        self._joined[handle] = code
        return previous

    def leave(self, handle: Hashable) -> Optional[str]:
        code = self._joined.pop(handle, None)
        if code is not None:
            self._discard(code, handle)
        return code

    def peers_excluding(self, code: str, handle: Hashable) -> Set[Hashable]:
        members = self._rooms.get(normalize_code(code), set())
        return {peer for peer in members if peer is not handle}

    def size(self, code: str) -> int:
        return len(self._rooms.get(normalize_code(code), ()))

    def room_of(self, handle: Hashable) -> Optional[str]:
        return self._joined.get(handle)

    def snapshot(self) -> Dict[str, int]:
        return {code: len(members) for code, members in self._rooms.items()}

    def _discard(self, code: str, handle: Hashable):
        members = self._rooms.get(code)
        if members is None:
            return
        members.discard(handle)
        if not members:
            del self._rooms[code]
