"""SQLite persistence layer for TermChat.

Holds the room directory (rooms with their allow-lists and ban-lists, plus
known user accounts) and the message log (room messages and direct messages)
in one database file.

Design goals:
  - Zero extra dependencies (uses stdlib sqlite3)
  - Safe for multi-request use (single process): guarded by a lock
  - Keep APIs small and explicit

:class:`SQLiteStore` is synchronous. :class:`SQLiteDirectory` and
:class:`SQLiteMessageLog` expose it to the asyncio server by running each
call in the default executor.

The DB file location is controlled by Config.SQLITE_DB_FILE.
"""

import asyncio
import functools
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from TermChat.core.server.interfaces import MessageEnvelope, RoomRecord, StoredMessage

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  username TEXT UNIQUE NOT NULL,
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS rooms (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT UNIQUE NOT NULL,
  created_at REAL NOT NULL
);

-- One row per user named on a room's allow-list or ban-list.
CREATE TABLE IF NOT EXISTS room_access (
  room_id INTEGER NOT NULL,
  username TEXT NOT NULL,
  banned INTEGER NOT NULL DEFAULT 0,
  UNIQUE(room_id, username, banned),
  FOREIGN KEY(room_id) REFERENCES rooms(id) ON DELETE CASCADE
);

-- Exactly one of room / recipient is set.
CREATE TABLE IF NOT EXISTS messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sender TEXT NOT NULL,
  room TEXT,
  recipient TEXT,
  content TEXT NOT NULL,
  created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_room_time ON messages(room, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_dm_time ON messages(sender, recipient, created_at);
"""


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=int(row["id"]),
        sender=str(row["sender"]),
        text=str(row["content"]),
        timestamp=float(row["created_at"]),
        room=row["room"],
        recipient=row["recipient"],
    )


class SQLiteStore:
    """A tiny SQLite-backed store for rooms, users and messages."""

    def __init__(self, db_path: str):
        self.db_path = str(Path(db_path))
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --------------------------- users ---------------------------
    def user_exists(self, username: str) -> bool:
        with self._lock:
            cur = self._conn.execute("SELECT 1 FROM users WHERE username=?", (username,))
            return cur.fetchone() is not None

    def create_user(self, username: str) -> bool:
        """Add a user account; False if it already exists."""
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO users(username, created_at) VALUES(?,?)",
                    (username, time.time()),
                )
                self._conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

    # --------------------------- rooms ---------------------------
    def _room_id_locked(self, name: str) -> Optional[int]:
        row = self._conn.execute("SELECT id FROM rooms WHERE name=?", (name,)).fetchone()
        return None if row is None else int(row["id"])

    def create_room(self, name: str, allowed: Iterable[str] = (), banned: Iterable[str] = ()) -> bool:
        """Create a room with its initial allow-list and ban-list; False if it exists."""
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO rooms(name, created_at) VALUES(?,?)",
                    (name, time.time()),
                )
            except sqlite3.IntegrityError:
                return False
            room_id = self._room_id_locked(name)
            self._conn.executemany(
                "INSERT OR IGNORE INTO room_access(room_id, username, banned) VALUES(?,?,0)",
                [(room_id, u) for u in allowed],
            )
            self._conn.executemany(
                "INSERT OR IGNORE INTO room_access(room_id, username, banned) VALUES(?,?,1)",
                [(room_id, u) for u in banned],
            )
            self._conn.commit()
            return True

    def set_room_access(self, name: str, username: str, banned: bool = False) -> bool:
        """Add ``username`` to a room's allow-list or ban-list; False if no such room."""
        with self._lock:
            room_id = self._room_id_locked(name)
            if room_id is None:
                return False
            self._conn.execute(
                "INSERT OR IGNORE INTO room_access(room_id, username, banned) VALUES(?,?,?)",
                (room_id, username, 1 if banned else 0),
            )
            self._conn.commit()
            return True

    def get_room(self, name: str) -> Optional[RoomRecord]:
        with self._lock:
            room_id = self._room_id_locked(name)
            if room_id is None:
                return None
            rows = self._conn.execute(
                "SELECT username, banned FROM room_access WHERE room_id=?",
                (room_id,),
            ).fetchall()
        return RoomRecord(
            name=name,
            allowed_users=frozenset(str(r["username"]) for r in rows if not r["banned"]),
            banned_users=frozenset(str(r["username"]) for r in rows if r["banned"]),
        )

    def list_room_names(self) -> List[str]:
        with self._lock:
            cur = self._conn.execute("SELECT name FROM rooms ORDER BY name")
            return [str(r["name"]) for r in cur.fetchall()]

    # ------------------------- messages --------------------------
    def add_message(self, envelope: MessageEnvelope) -> StoredMessage:
        if (envelope.room is None) == (envelope.recipient is None):
            raise ValueError("A message needs exactly one of room or recipient")
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO messages(sender, room, recipient, content, created_at) VALUES(?,?,?,?,?)",
                (envelope.sender, envelope.room, envelope.recipient, envelope.text, envelope.timestamp),
            )
            self._conn.commit()
            message_id = int(cur.lastrowid)
        return StoredMessage(
            id=message_id,
            sender=envelope.sender,
            text=envelope.text,
            timestamp=envelope.timestamp,
            room=envelope.room,
            recipient=envelope.recipient,
        )

    def room_history(self, room: str, limit: int) -> List[StoredMessage]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, sender, room, recipient, content, created_at
                FROM messages
                WHERE room=?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (room, int(limit)),
            ).fetchall()
        # Return chronological order
        rows.reverse()
        return [_row_to_message(r) for r in rows]

    def dm_history(self, user_a: str, user_b: str, limit: int) -> List[StoredMessage]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, sender, room, recipient, content, created_at
                FROM messages
                WHERE room IS NULL
                  AND ((sender=? AND recipient=?) OR (sender=? AND recipient=?))
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_a, user_b, user_b, user_a, int(limit)),
            ).fetchall()
        rows.reverse()
        return [_row_to_message(r) for r in rows]


class _ExecutorAdapter:
    def __init__(self, store: SQLiteStore):
        self.store = store

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))


class SQLiteDirectory(_ExecutorAdapter):
    """:class:`Directory` backed by a :class:`SQLiteStore`."""

    async def find_room(self, name: str) -> Optional[RoomRecord]:
        return await self._run(self.store.get_room, name)

    async def find_user(self, identity: str) -> bool:
        return await self._run(self.store.user_exists, identity)

    async def list_room_names(self) -> List[str]:
        return await self._run(self.store.list_room_names)


class SQLiteMessageLog(_ExecutorAdapter):
    """:class:`MessageLog` backed by a :class:`SQLiteStore`."""

    async def append(self, envelope: MessageEnvelope) -> StoredMessage:
        return await self._run(self.store.add_message, envelope)

    async def room_history(self, room: str, limit: int) -> List[StoredMessage]:
        return await self._run(self.store.room_history, room, limit)

    async def dm_history(self, user_a: str, user_b: str, limit: int) -> List[StoredMessage]:
        return await self._run(self.store.dm_history, user_a, user_b, limit)


__all__ = ['SQLiteStore', 'SQLiteDirectory', 'SQLiteMessageLog', 'SCHEMA_SQL']
