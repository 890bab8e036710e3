"""
Room access checks.

Answers whether an identity may join a room, using the directory's
allow-list and ban-list. A directory failure is reported as a denial.
"""

import logging
from enum import Enum

from TermChat.core.server.interfaces import Directory

logger = logging.getLogger(__name__)


class AccessDecision(Enum):
    """Outcome of a room access check, with the reason shown to the user."""
    GRANTED = "granted"
    DENIED_ROOM_NOT_FOUND = "Room does not exist"
    DENIED_NOT_ALLOWED = "You are not allowed to join this room"
    DENIED_LOOKUP_FAILED = "Permission check failed"

    @property
    def granted(self) -> bool:
        return self is AccessDecision.GRANTED

    @property
    def reason(self) -> str:
        return self.value


class AccessGate:
    """Validates room access against a :class:`Directory`; never mutates state."""

    def __init__(self, directory: Directory):
        self._directory = directory

    async def check_room_access(self, identity: str, room: str) -> AccessDecision:
        try:
            record = await self._directory.find_room(room)
        except Exception:
            logger.exception("Directory lookup for room %r failed (identity=%s)", room, identity)
            return AccessDecision.DENIED_LOOKUP_FAILED

        if record is None:
            return AccessDecision.DENIED_ROOM_NOT_FOUND
        if identity in record.banned_users or identity not in record.allowed_users:
            return AccessDecision.DENIED_NOT_ALLOWED
        return AccessDecision.GRANTED


__all__ = ['AccessDecision', 'AccessGate']
