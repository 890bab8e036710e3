"""Presence tracking and disconnect cleanup.

Announces users coming online and going offline, and tears down a
connection's chat state when it disconnects, logs out, or is replaced by a
newer login of the same user.

Teardown order for a departing connection:
- remove it from the registry and from every fan-out channel
- send the old room its new roster and a ``room-user-disconnect`` notice
- send ``dm-user-disconnect`` to each active DM peer that is online
- broadcast ``user-status`` offline to every remaining connection

Once a connection is out of the registry a second teardown finds nothing and
does nothing, so logout followed by the socket closing is safe.
"""

import logging
from typing import List, Optional

from TermChat.core.message.protocol import Event, EventType
from TermChat.core.server.interfaces import HandlerResult, TransportConnection
from TermChat.core.server.routing import EventDelivery
from TermChat.core.server.routing.rooms import RoomRouter
from TermChat.core.server.session import ConnectionRecord, ConnectionRegistry
from TermChat.core.server.utils.helpers import create_disconnect_notice, create_status_event, now

logger = logging.getLogger(__name__)

SESSION_REPLACED_CODE = 4000
SESSION_REPLACED_REASON = "Session replaced"


class PresenceCoordinator:
    """Online/offline announcements and the disconnect cascade."""

    def __init__(self, registry: ConnectionRegistry, delivery: EventDelivery, rooms: RoomRouter):
        self._registry = registry
        self._delivery = delivery
        self._rooms = rooms

    async def connect(
        self,
        connection_id: str,
        identity: str,
        transport: TransportConnection
    ) -> Optional[ConnectionRecord]:
        """
        Bring an authenticated connection online.

        If the user was already online elsewhere, that older connection is
        torn down first and its socket closed with code 4000.

        Returns:
            The displaced record of the older connection, or None
        """
        displaced = self._registry.register(connection_id, identity)

        if displaced is not None:
            old_transport = self._delivery.detach(displaced.connection_id)
            await self._announce_departure(displaced)
            if old_transport is not None:
                try:
                    await old_transport.close(SESSION_REPLACED_CODE, SESSION_REPLACED_REASON)
                except Exception:
                    logger.exception("Closing replaced connection %s failed", displaced.connection_id)

        if self._registry.lookup_by_identity(identity) != connection_id:
            logger.info("Connection %s for %s went away before it was announced", connection_id, identity)
            return displaced

        # The departure cascade above must not reach the new connection.
        self._delivery.attach(transport)
        await self._delivery.to_all(create_status_event(identity, True))
        logger.info("User %s online on %s (online: %d)", identity, connection_id, len(self._registry))
        return displaced

    async def disconnect(self, connection_id: str) -> Optional[ConnectionRecord]:
        """
        Tear down a connection; used for both logout and transport close.

        Returns:
            The removed record, or None if the connection was already gone
        """
        record = self._registry.unregister(connection_id)
        self._delivery.detach(connection_id)
        if record is None:
            return None

        await self._announce_departure(record)
        logger.info("User %s disconnected from %s after %.1fs",
                    record.identity, connection_id, record.duration)
        return record

    def online_users(self) -> List[str]:
        return sorted(set(self._registry.all_online_identities()))

    async def send_online_users(self, connection_id: str) -> HandlerResult:
        """Reply to ``get-online-users`` with every online username."""
        users = self.online_users()
        await self._delivery.send(connection_id, Event(EventType.ONLINE_USERS_LIST, {"users": users}))
        return HandlerResult.success(users=users)

    async def _announce_departure(self, record: ConnectionRecord) -> None:
        timestamp = now()
        identity = record.identity

        if record.current_room is not None:
            await self._rooms.broadcast_roster(record.current_room)
            await self._delivery.to_room(
                record.current_room,
                create_disconnect_notice(EventType.ROOM_USER_DISCONNECT, identity, timestamp),
            )

        peer_connections = []
        for peer in sorted(record.active_dm_peers):
            peer_cid = self._registry.lookup_by_identity(peer)
            if peer_cid is not None:
                peer_connections.append(peer_cid)
        if peer_connections:
            await self._delivery.send_many(
                peer_connections,
                create_disconnect_notice(EventType.DM_USER_DISCONNECT, identity, timestamp),
            )

        await self._delivery.to_all(create_status_event(identity, False))


__all__ = [
    'PresenceCoordinator',
    'SESSION_REPLACED_CODE',
    'SESSION_REPLACED_REASON',
]
