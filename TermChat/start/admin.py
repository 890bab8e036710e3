"""Database housekeeping commands: creating rooms and issuing tokens."""

from typing import Iterable, Optional

from TermChat.config import config
from TermChat.core.server.auth import issue_token as _issue_token
from TermChat.core.server.storage_sqlite import SQLiteStore
from TermChat.core.server.utils.helpers import is_valid_room_name, is_valid_username


def create_room(name: str, allowed: Iterable[str] = (), banned: Iterable[str] = (),
                db_path: Optional[str] = None) -> str:
    """
    Create a room, or extend the lists of an existing one.

    Every user named is also added as a known user.

    Raises:
        ValueError: for a malformed room name or username
    """
    allowed = list(allowed)
    banned = list(banned)
    if not is_valid_room_name(name):
        raise ValueError(f"Invalid room name: {name!r}")
    for username in allowed + banned:
        if not is_valid_username(username):
            raise ValueError(f"Invalid username: {username!r}")

    store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
    try:
        for username in allowed + banned:
            store.create_user(username)
        if store.create_room(name, allowed, banned):
            return f"Created room {name}"
        for username in allowed:
            store.set_room_access(name, username)
        for username in banned:
            store.set_room_access(name, username, banned=True)
        return f"Updated room {name}"
    finally:
        store.close()


def issue_token(username: str, db_path: Optional[str] = None) -> str:
    """
    Register ``username`` as a known user and return a token for it.

    Raises:
        ValueError: for a malformed username
    """
    if not is_valid_username(username):
        raise ValueError(f"Invalid username: {username!r}")
    store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
    try:
        store.create_user(username)
    finally:
        store.close()
    return _issue_token(username)
