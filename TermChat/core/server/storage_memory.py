"""In-memory Directory and MessageLog, for tests and the demo server."""

import itertools
from typing import Dict, Iterable, List, Optional, Set

from TermChat.core.server.interfaces import MessageEnvelope, RoomRecord, StoredMessage


class InMemoryDirectory:
    """Rooms and users held in dictionaries."""

    def __init__(self):
        self._rooms: Dict[str, RoomRecord] = {}
        self._users: Set[str] = set()

    def add_user(self, username: str) -> None:
        self._users.add(username)

    def add_room(self, name: str, allowed: Iterable[str] = (), banned: Iterable[str] = ()) -> RoomRecord:
        room = RoomRecord(name=name, allowed_users=frozenset(allowed), banned_users=frozenset(banned))
        self._rooms[name] = room
        self._users.update(room.allowed_users)
        return room

    def allow(self, name: str, username: str) -> None:
        room = self._rooms[name]
        self._rooms[name] = RoomRecord(name, room.allowed_users | {username}, room.banned_users)

    def ban(self, name: str, username: str) -> None:
        room = self._rooms[name]
        self._rooms[name] = RoomRecord(name, room.allowed_users, room.banned_users | {username})

    async def find_room(self, name: str) -> Optional[RoomRecord]:
        return self._rooms.get(name)

    async def find_user(self, identity: str) -> bool:
        return identity in self._users

    async def list_room_names(self) -> List[str]:
        return sorted(self._rooms)


class InMemoryMessageLog:
    """Append-only list of messages with sequential ids."""

    def __init__(self):
        self._messages: List[StoredMessage] = []
        self._ids = itertools.count(1)

    @property
    def messages(self) -> List[StoredMessage]:
        return list(self._messages)

    async def append(self, envelope: MessageEnvelope) -> StoredMessage:
        if (envelope.room is None) == (envelope.recipient is None):
            raise ValueError("A message needs exactly one of room or recipient")
        stored = StoredMessage(
            id=next(self._ids),
            sender=envelope.sender,
            text=envelope.text,
            timestamp=envelope.timestamp,
            room=envelope.room,
            recipient=envelope.recipient,
        )
        self._messages.append(stored)
        return stored

    async def room_history(self, room: str, limit: int) -> List[StoredMessage]:
        matching = [m for m in self._messages if m.room == room]
        return matching[-limit:] if limit > 0 else []

    async def dm_history(self, user_a: str, user_b: str, limit: int) -> List[StoredMessage]:
        pair = {user_a, user_b}
        matching = [
            m for m in self._messages
            if m.room is None and {m.sender, m.recipient} == pair
        ]
        return matching[-limit:] if limit > 0 else []


__all__ = ['InMemoryDirectory', 'InMemoryMessageLog']
