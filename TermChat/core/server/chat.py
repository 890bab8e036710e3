"""
The chat core: one object owning all connection state and routing.

:class:`ChatCore` wires the registry, access gate, routers and presence
coordinator together over a :class:`Directory` and a :class:`MessageLog`,
and exposes a single :meth:`ChatCore.handle` entry point that turns any
intent into a :class:`HandlerResult`. Exceptions never escape ``handle``.
"""

import logging
import time
from typing import Callable, List, Optional

from TermChat.config import config
from TermChat.core.message.protocol import (
    DirectMessage,
    GetDMHistory,
    GetOnlineUsers,
    GetUsers,
    Intent,
    JoinRoom,
    LeaveRoom,
    Logout,
    RoomMessage,
    StopTyping,
    Typing,
)
from TermChat.core.server.access import AccessGate
from TermChat.core.server.interfaces import (
    Directory,
    ErrorKind,
    HandlerResult,
    MessageLog,
    TransportConnection,
)
from TermChat.core.server.presence import PresenceCoordinator
from TermChat.core.server.routing import EventDelivery, OrderedLanes
from TermChat.core.server.routing.direct import DirectMessageRouter
from TermChat.core.server.routing.rooms import RoomRouter
from TermChat.core.server.session import ConnectionRecord, ConnectionRegistry

logger = logging.getLogger(__name__)

_LOGGED_KINDS = (ErrorKind.DEPENDENCY, ErrorKind.INTERNAL)


class ChatCore:
    """
    Connection-state and routing core.

    Args:
        directory: Room and user lookups
        message_log: Durable message storage
        history_limit: Messages returned by room and DM history
        room_cache_ttl: Seconds :meth:`list_room_names` results are reused
        clock: Monotonic time source for the room cache
    """

    def __init__(
        self,
        directory: Directory,
        message_log: MessageLog,
        history_limit: Optional[int] = None,
        room_cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._directory = directory
        self._room_cache_ttl = config.ROOM_CACHE_TTL if room_cache_ttl is None else room_cache_ttl
        self._clock = clock
        self._room_names: Optional[List[str]] = None
        self._room_names_at = 0.0

        limit = history_limit or config.MESSAGE_HISTORY_LIMIT
        lanes = OrderedLanes()
        self.registry = ConnectionRegistry()
        self.delivery = EventDelivery()
        self.gate = AccessGate(directory)
        self.rooms = RoomRouter(self.registry, self.gate, self.delivery, message_log, limit, lanes)
        self.direct = DirectMessageRouter(self.registry, self.delivery, message_log, limit, lanes)
        self.presence = PresenceCoordinator(self.registry, self.delivery, self.rooms)

    async def connect(
        self,
        connection_id: str,
        identity: str,
        transport: TransportConnection
    ) -> Optional[ConnectionRecord]:
        """Register an authenticated connection; returns the record it displaced, if any."""
        return await self.presence.connect(connection_id, identity, transport)

    async def disconnect(self, connection_id: str) -> Optional[ConnectionRecord]:
        return await self.presence.disconnect(connection_id)

    async def handle(self, connection_id: str, intent: Intent) -> HandlerResult:
        """
        Apply one intent on behalf of a connection.

        Args:
            connection_id: The connection the intent arrived on
            intent: A parsed intent

        Returns:
            The outcome; unexpected errors come back as ``DEPENDENCY``
        """
        record = self.registry.lookup_by_connection(connection_id)
        if record is None:
            logger.error("Intent %s on unregistered connection %s", type(intent).__name__, connection_id)
            return HandlerResult.failure(ErrorKind.INTERNAL, "Connection is not registered")

        try:
            result = await self._dispatch(record, intent)
        except Exception:
            logger.exception("Unhandled error (connection=%s, identity=%s, intent=%r)",
                             connection_id, record.identity, intent)
            return HandlerResult.failure(ErrorKind.DEPENDENCY, "Server error")

        if not result.ok and result.kind in _LOGGED_KINDS:
            logger.error("%s failure (connection=%s, identity=%s, intent=%r): %s",
                         result.kind.value, connection_id, record.identity, intent, result.message)
        return result

    async def _dispatch(self, record: ConnectionRecord, intent: Intent) -> HandlerResult:
        connection_id = record.connection_id
        identity = record.identity

        if isinstance(intent, JoinRoom):
            return await self.rooms.join(connection_id, identity, intent.room)
        if isinstance(intent, LeaveRoom):
            return await self.rooms.leave(connection_id, intent.room)
        if isinstance(intent, RoomMessage):
            return await self.rooms.send_message(connection_id, intent.room, intent.text)
        if isinstance(intent, GetUsers):
            return await self.rooms.send_roster(connection_id, intent.room)
        if isinstance(intent, DirectMessage):
            return await self.direct.send(identity, intent.to, intent.text)
        if isinstance(intent, GetDMHistory):
            return await self.direct.history(identity, intent.peer)
        if isinstance(intent, Typing):
            return await self.rooms.typing(connection_id, intent.room, active=True)
        if isinstance(intent, StopTyping):
            return await self.rooms.typing(connection_id, intent.room, active=False)
        if isinstance(intent, GetOnlineUsers):
            return await self.presence.send_online_users(connection_id)
        if isinstance(intent, Logout):
            await self.presence.disconnect(connection_id)
            return HandlerResult.success()
        raise TypeError(f"Unsupported intent type: {type(intent).__name__}")

    async def is_known_user(self, identity: str) -> bool:
        return await self._directory.find_user(identity)

    async def list_room_names(self) -> List[str]:
        """
        Names of every room, served from a short-lived cache.

        Raises:
            Exception: whatever the directory raises on a cache miss
        """
        stamp = self._clock()
        if self._room_names is not None and stamp - self._room_names_at < self._room_cache_ttl:
            return list(self._room_names)
        names = list(await self._directory.list_room_names())
        self._room_names = names
        self._room_names_at = self._clock()
        return list(names)

    def invalidate_room_cache(self) -> None:
        self._room_names = None


__all__ = ['ChatCore']
