"""
Connection registry for the server.

Maps live connection ids to the identity that authenticated on them and to
their per-connection chat state: the room they are in and the users they
have an open direct-message exchange with. A reverse index answers "which
connection is this user on".

One live connection per identity: registering an identity that is already
connected displaces the earlier record, which is returned to the caller so
it can be torn down.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRecord:
    """
    Chat state of one live connection.

    Attributes:
        connection_id: Transport-assigned id, used only as a key
        identity: Username the connection authenticated as
        current_room: Room the connection is in, or None
        active_dm_peers: Users this connection exchanged DMs or history with
        created_at: Registration timestamp
    """
    connection_id: str
    identity: str
    current_room: Optional[str] = None
    active_dm_peers: Set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        """Seconds since registration."""
        return time.time() - self.created_at


class ConnectionRegistry:
    """
    In-memory registry of authenticated connections.

    All operations are synchronous; under a single event loop no locking is
    needed. Iteration helpers are generators over a snapshot so callers may
    await between items without tripping over concurrent changes.
    """

    def __init__(self):
        self._records: Dict[str, ConnectionRecord] = {}
        self._by_identity: Dict[str, str] = {}

    def register(self, connection_id: str, identity: str) -> Optional[ConnectionRecord]:
        """
        Record a freshly authenticated connection.

        Args:
            connection_id: Transport connection id
            identity: Authenticated username

        Returns:
            The record this identity was previously registered under, now
            removed from the registry, or None
        """
        displaced = None
        previous_id = self._by_identity.get(identity)
        if previous_id is not None and previous_id != connection_id:
            displaced = self._records.pop(previous_id, None)
            logger.info("Identity %s moved from connection %s to %s",
                        identity, previous_id, connection_id)

        stale = self._records.get(connection_id)
        if stale is not None and stale.identity != identity:
            self._by_identity.pop(stale.identity, None)

        self._records[connection_id] = ConnectionRecord(connection_id=connection_id, identity=identity)
        self._by_identity[identity] = connection_id
        logger.debug("Registered connection %s for %s (total: %d)",
                     connection_id, identity, len(self._records))
        return displaced

    def unregister(self, connection_id: str) -> Optional[ConnectionRecord]:
        """
        Remove a connection.

        Returns:
            The removed record, or None if the connection was not registered
        """
        record = self._records.pop(connection_id, None)
        if record is None:
            return None
        if self._by_identity.get(record.identity) == connection_id:
            del self._by_identity[record.identity]
        logger.debug("Unregistered connection %s for %s", connection_id, record.identity)
        return record

    def lookup_by_connection(self, connection_id: str) -> Optional[ConnectionRecord]:
        return self._records.get(connection_id)

    def lookup_by_identity(self, identity: str) -> Optional[str]:
        """Connection id the user is online on, or None."""
        return self._by_identity.get(identity)

    def is_online(self, identity: str) -> bool:
        return identity in self._by_identity

    def set_room(self, connection_id: str, room: Optional[str]) -> None:
        """Set or clear the current room; ignored for unknown connections."""
        record = self._records.get(connection_id)
        if record is not None:
            record.current_room = room

    def add_dm_peer(self, connection_id: str, peer: str) -> None:
        record = self._records.get(connection_id)
        if record is not None:
            record.active_dm_peers.add(peer)

    def members_of_room(self, room: str) -> Iterator[str]:
        """Identities whose connection is currently in ``room``."""
        for record in list(self._records.values()):
            if record.current_room == room:
                yield record.identity

    def connections_in_room(self, room: str) -> Iterator[str]:
        """Connection ids currently in ``room``."""
        for record in list(self._records.values()):
            if record.current_room == room:
                yield record.connection_id

    def all_online_identities(self) -> Iterator[str]:
        for record in list(self._records.values()):
            yield record.identity

    def all_connection_ids(self) -> Iterator[str]:
        yield from list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._records


__all__ = ['ConnectionRecord', 'ConnectionRegistry']
