"""Realtime wire messages.

Every frame is a JSON object ``{"type": <event>, "payload": <data>}``. Inbound
frames are parsed into one model per event kind before they reach the relay,
so handlers never see undefined fields.
"""
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, TypeAdapter
from pydantic.alias_generators import to_camel
from typing import Annotated, Literal, Union

# Strokes are forwarded as sent, so "2" or true are rejected rather than coerced
Number = Union[StrictInt, StrictFloat]

JOIN_ROOM = "join-room"
DRAWING_DATA = "drawing-data"
CANVAS_DATA = "canvas-data"
CLEAR_CANVAS = "clear-canvas"
ERROR = "error"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DrawingData(WireModel):
    room_code: str
    prev_x: Number
    prev_y: Number
    current_x: Number
    current_y: Number
    color: str
    size: Number
    tool: str

    def stroke(self) -> dict:
        """The segment as peers receive it: everything but the room code."""
        return self.model_dump(by_alias=True, exclude={"room_code"})


class CanvasData(WireModel):
    room_code: str
    image_data: str


class JoinRoomMessage(BaseModel):
    type: Literal["join-room"]
    payload: str


class DrawingDataMessage(BaseModel):
    type: Literal["drawing-data"]
    payload: DrawingData


class CanvasDataMessage(BaseModel):
    type: Literal["canvas-data"]
    payload: CanvasData


class ClearCanvasMessage(BaseModel):
    type: Literal["clear-canvas"]
    payload: str


InboundMessage = Annotated[
    Union[JoinRoomMessage, DrawingDataMessage, CanvasDataMessage, ClearCanvasMessage],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: str):
    """Parse a text frame. Raises pydantic.ValidationError on bad JSON or shape."""
    return _inbound_adapter.validate_json(raw)


def envelope(event: str, payload=None) -> dict:
    return {"type": event, "payload": payload}
