"""
Wire protocol for TermChat.

Every WebSocket text frame is a JSON object ``{"event": ..., "data": {...}}``.
Frames sent by a client may carry an ``id``; the server answers those with an
``ack`` frame that repeats the id.

Inbound frames are parsed into a closed set of intent dataclasses so the
server can dispatch on their type. Outbound frames are :class:`Event` objects.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class IntentType(Enum):
    """Event names a client may send."""
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    ROOM_MESSAGE = "room-message"
    GET_USERS = "get-users"
    DM = "dm"
    GET_DM_HISTORY = "get-dm-history"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"
    GET_ONLINE_USERS = "get-online-users"
    LOGOUT = "logout"


class EventType(Enum):
    """Event names the server emits."""
    JOIN_ROOM_SUCCESS = "join-room-success"
    JOIN_ROOM_ERROR = "join-room-error"
    ROOM_HISTORY = "room-history"
    ROOM_USERS = "room-users"
    USERS_LIST = "users-list"
    ROOM_MESSAGE = "room-message"
    ROOM_USER_DISCONNECT = "room-user-disconnect"
    DM = "dm"
    DM_ERROR = "dm-error"
    DM_HISTORY = "dm-history"
    DM_USER_DISCONNECT = "dm-user-disconnect"
    USER_TYPING = "user-typing"
    USER_STOP_TYPING = "user-stop-typing"
    USER_STATUS = "user-status"
    ONLINE_USERS_LIST = "online-users-list"
    ACK = "ack"
    ERROR = "error"


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded into an intent."""


@dataclass
class Event:
    """
    A server-to-client frame.

    Attributes:
        type: Outbound event name
        data: JSON-serialisable payload (a dict, or a list for rosters)
        id: Acknowledgement id, only set on ``ack`` frames
    """
    type: EventType
    data: Any = field(default_factory=dict)
    id: Optional[Any] = None

    def serialize(self) -> str:
        frame: Dict[str, Any] = {"event": self.type.value, "data": self.data}
        if self.id is not None:
            frame["id"] = self.id
        return json.dumps(frame)

    @classmethod
    def deserialize(cls, raw: str) -> 'Event':
        obj = json.loads(raw)
        return cls(type=EventType(obj["event"]), data=obj.get("data"), id=obj.get("id"))


@dataclass(frozen=True)
class JoinRoom:
    room: str


@dataclass(frozen=True)
class LeaveRoom:
    room: str


@dataclass(frozen=True)
class RoomMessage:
    room: str
    text: str


@dataclass(frozen=True)
class GetUsers:
    room: str


@dataclass(frozen=True)
class DirectMessage:
    to: str
    text: str


@dataclass(frozen=True)
class GetDMHistory:
    peer: str


@dataclass(frozen=True)
class Typing:
    room: str


@dataclass(frozen=True)
class StopTyping:
    room: str


@dataclass(frozen=True)
class GetOnlineUsers:
    pass


@dataclass(frozen=True)
class Logout:
    pass


Intent = Union[
    JoinRoom, LeaveRoom, RoomMessage, GetUsers, DirectMessage,
    GetDMHistory, Typing, StopTyping, GetOnlineUsers, Logout,
]


@dataclass
class Frame:
    """A decoded client-to-server frame before intent parsing."""
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[Any] = None

    @classmethod
    def deserialize(cls, raw: Union[str, bytes]) -> 'Frame':
        """
        Decode a raw WebSocket message.

        Raises:
            ProtocolError: if the frame is not a JSON object with an ``event``
        """
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed frame: {e}") from e
        if not isinstance(obj, dict):
            raise ProtocolError("Frame must be a JSON object")
        event = obj.get("event")
        if not isinstance(event, str):
            raise ProtocolError("Frame is missing an event name")
        data = obj.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ProtocolError("Frame data must be an object")
        return cls(event=event, data=data, id=obj.get("id"))

    def serialize(self) -> str:
        frame: Dict[str, Any] = {"event": self.event, "data": self.data}
        if self.id is not None:
            frame["id"] = self.id
        return json.dumps(frame)


def _field(data: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = data.get(name)
        if value is not None:
            if not isinstance(value, str):
                raise ProtocolError(f"Field '{name}' must be a string")
            return value
    raise ProtocolError(f"Missing field '{names[0]}'")


def parse_intent(frame: Frame) -> Intent:
    """
    Turn a frame into its intent.

    Message text may be sent as ``msg`` or ``text``.

    Raises:
        ProtocolError: for unknown events or missing/ill-typed fields
    """
    try:
        kind = IntentType(frame.event)
    except ValueError:
        raise ProtocolError(f"Unknown event '{frame.event}'") from None

    data = frame.data
    if kind is IntentType.JOIN_ROOM:
        return JoinRoom(room=_field(data, "room"))
    if kind is IntentType.LEAVE_ROOM:
        return LeaveRoom(room=_field(data, "room"))
    if kind is IntentType.ROOM_MESSAGE:
        return RoomMessage(room=_field(data, "room"), text=_field(data, "msg", "text"))
    if kind is IntentType.GET_USERS:
        return GetUsers(room=_field(data, "room"))
    if kind is IntentType.DM:
        return DirectMessage(to=_field(data, "to"), text=_field(data, "msg", "text"))
    if kind is IntentType.GET_DM_HISTORY:
        return GetDMHistory(peer=_field(data, "peer", "user2"))
    if kind is IntentType.TYPING:
        return Typing(room=_field(data, "room"))
    if kind is IntentType.STOP_TYPING:
        return StopTyping(room=_field(data, "room"))
    if kind is IntentType.GET_ONLINE_USERS:
        return GetOnlineUsers()
    if kind is IntentType.LOGOUT:
        return Logout()
    raise ProtocolError(f"Unhandled event '{frame.event}'")
