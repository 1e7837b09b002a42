import asyncio
from typing import Iterable, Optional, Set

import pydantic

from errors import InvalidRoomCode
from logging_config import get_logger
from room_codes import normalize_code
from schemas.messages import (
    CANVAS_DATA,
    CLEAR_CANVAS,
    DRAWING_DATA,
    ERROR,
    CanvasData,
    CanvasDataMessage,
    ClearCanvasMessage,
    DrawingData,
    DrawingDataMessage,
    JoinRoomMessage,
    parse_inbound,
)
from sessions import Connection, ConnectionState, SessionRegistry

logger = get_logger(__name__)


class Relay:
    """Fans drawing traffic out to the other connections of a room.

    Live delivery never waits on the store: snapshot writes run as background
    tasks and their failures are only logged.
    """

    def __init__(self, store, registry: Optional[SessionRegistry] = None):
        self.store = store
        self.registry = registry if registry is not None else SessionRegistry()
        self._background: Set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._background)

    def on_connect(self, connection: Connection):
        connection.state = ConnectionState.CONNECTED
        logger.info(f"Socket connection established: {connection.id}")

    async def on_join_room(self, connection: Connection, raw_code):
        if connection.state is ConnectionState.DISCONNECTED:
            return
        code = normalize_code(raw_code)
        if not code:
            logger.warning(f"Connection {connection.id} sent join-room without a room code")
            raise InvalidRoomCode(raw_code)

        previous = self.registry.join(code, connection)
        connection.mark_joined(code)
        if previous:
            logger.info(f"Connection {connection.id} moved from room {previous} to {code}")
        logger.info(f"Connection {connection.id} joined room {code} (live connections: {self.registry.size(code)})")

        try:
            room = await self.store.find_by_code(code)
        except Exception as e:
            logger.error(f"Could not load canvas for room {code}, joining without sync: {e}", exc_info=True)
            return

        if room is not None and room.canvas_data:
            logger.debug(f"Sending existing canvas data for room {code} to {connection.id}")
            await self._deliver(connection, CANVAS_DATA, {"imageData": room.canvas_data})

    async def on_drawing_data(self, connection: Connection, drawing: DrawingData):
        code = self._target_room(connection, DRAWING_DATA, drawing.room_code)
        if code is None:
            return
        peers = self.registry.peers_excluding(code, connection)
        logger.debug(f"Broadcasting drawing data to room {code} ({len(peers)} peers)")
        await self._broadcast(peers, DRAWING_DATA, drawing.stroke())

    async def on_canvas_data(self, connection: Connection, canvas: CanvasData):
        code = self._target_room(connection, CANVAS_DATA, canvas.room_code)
        if code is None:
            return
        peers = self.registry.peers_excluding(code, connection)
        logger.debug(f"Broadcasting full canvas data to room {code} ({len(peers)} peers, {len(canvas.image_data)} chars)")
        await self._broadcast(peers, CANVAS_DATA, {"imageData": canvas.image_data})
        self._persist_later(self.store.update_snapshot(code, canvas.image_data), f"save canvas for room {code}")

    async def on_clear_canvas(self, connection: Connection, raw_code):
        code = self._target_room(connection, CLEAR_CANVAS, raw_code)
        if code is None:
            return
        peers = self.registry.peers_excluding(code, connection)
        logger.debug(f"Broadcasting clear canvas to room {code} ({len(peers)} peers)")
        await self._broadcast(peers, CLEAR_CANVAS, None)
        self._persist_later(self.store.clear_snapshot(code), f"clear canvas for room {code}")

    def on_disconnect(self, connection: Connection):
        code = self.registry.leave(connection)
        connection.mark_disconnected()
        if code:
            logger.info(f"Socket {connection.id} disconnected from room {code} (remaining: {self.registry.size(code)})")
        else:
            logger.info(f"Socket disconnected: {connection.id}")

    async def dispatch(self, connection: Connection, raw: str):
        """Route one inbound text frame."""
        try:
            message = parse_inbound(raw)
        except pydantic.ValidationError as e:
            logger.warning(f"Malformed message from {connection.id}: {e.error_count()} errors")
            await self._deliver(connection, ERROR, {
                "code": "malformed-message",
                "detail": e.errors(include_url=False, include_input=False, include_context=False),
            })
            return

        try:
            if isinstance(message, JoinRoomMessage):
                await self.on_join_room(connection, message.payload)
            elif isinstance(message, DrawingDataMessage):
                await self.on_drawing_data(connection, message.payload)
            elif isinstance(message, CanvasDataMessage):
                await self.on_canvas_data(connection, message.payload)
            elif isinstance(message, ClearCanvasMessage):
                await self.on_clear_canvas(connection, message.payload)
        except InvalidRoomCode as e:
            await self._deliver(connection, ERROR, {"code": "invalid-room-code", "detail": e.detail})

    async def drain(self):
        """Wait for every scheduled snapshot write to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _target_room(self, connection: Connection, event: str, raw_code) -> Optional[str]:
        if not connection.is_joined:
            logger.warning(f"Ignoring {event} from {connection.id}: not joined to any room")
            return None
        code = normalize_code(raw_code)
        if not code:
            logger.warning(f"Ignoring {event} from {connection.id}: empty room code")
            return None
        return code

    async def _broadcast(self, peers: Iterable[Connection], event: str, payload):
        tasks = [self._deliver(peer, event, payload) for peer in peers]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _deliver(self, connection: Connection, event: str, payload) -> bool:
        try:
            await connection.send(event, payload)
            return True
        except Exception as e:
            # The receive loop of that connection cleans it up on disconnect
            logger.warning(f"Error sending {event} to connection {connection.id}: {e}")
            return False

    def _persist_later(self, operation, description: str):
        task = asyncio.create_task(self._best_effort(operation, description))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _best_effort(operation, description: str):
        try:
            stored = await operation
        except Exception as e:
            logger.error(f"Failed to {description}: {e}", exc_info=True)
            return
        if stored:
            logger.debug(f"Done: {description}")
        else:
            logger.debug(f"Skipped: {description} (room not found)")
