"""
Utility functions and helpers for the server module.

Input validation, message sanitisation and factories for the events the
server emits.
"""

import re
import time
from typing import Iterable, List, Optional

from TermChat.config import config
from TermChat.core.message.protocol import Event, EventType
from TermChat.core.server.interfaces import StoredMessage

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,50}$")
_ROOM_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{3,100}$")

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_RE = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=\s*['\"]", re.IGNORECASE)

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)


def is_valid_username(value: object) -> bool:
    """3-50 letters, digits or underscores."""
    return isinstance(value, str) and _USERNAME_RE.match(value) is not None


def is_valid_room_name(value: object) -> bool:
    """3-100 letters, digits, hyphens or underscores."""
    return isinstance(value, str) and _ROOM_NAME_RE.match(value) is not None


def is_valid_message(value: object, max_length: Optional[int] = None) -> bool:
    """Non-blank text no longer than ``max_length`` (config default)."""
    if not isinstance(value, str):
        return False
    limit = max_length or config.MAX_MESSAGE_LENGTH
    stripped = value.strip()
    return 0 < len(stripped) <= limit


def escape_html(text: str) -> str:
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


def sanitize_text(text: str) -> str:
    """
    Strip script/iframe blocks and inline event handlers, then escape HTML.

    Applied to every chat message before it is stored or fanned out.
    """
    cleaned = _SCRIPT_RE.sub("", text)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    cleaned = _IFRAME_RE.sub("", cleaned)
    return escape_html(cleaned)


def now() -> float:
    """Server-assigned timestamp for messages and notices."""
    return time.time()


def create_error_event(message: str, kind: str = "validation") -> Event:
    return Event(EventType.ERROR, {"kind": kind, "msg": message})


def create_ack_event(ack_id: object, payload: dict) -> Event:
    return Event(EventType.ACK, payload, id=ack_id)


def create_roster_event(members: Iterable[str]) -> Event:
    return Event(EventType.ROOM_USERS, list(members))


def create_status_event(username: str, online: bool) -> Event:
    return Event(EventType.USER_STATUS, {
        "username": username,
        "status": "online" if online else "offline",
    })


def create_disconnect_notice(event_type: EventType, username: str, timestamp: float) -> Event:
    """``room-user-disconnect`` or ``dm-user-disconnect`` notice."""
    return Event(event_type, {"username": username, "timestamp": timestamp})


def create_room_message_event(message: StoredMessage) -> Event:
    return Event(EventType.ROOM_MESSAGE, {
        "room": message.room,
        "user": message.sender,
        "msg": message.text,
        "timestamp": message.timestamp,
    })


def create_dm_event(message: StoredMessage) -> Event:
    return Event(EventType.DM, {
        "from": message.sender,
        "to": message.recipient,
        "msg": message.text,
        "timestamp": message.timestamp,
    })


def serialize_history(messages: Iterable[StoredMessage]) -> List[dict]:
    return [m.to_dict() for m in messages]
