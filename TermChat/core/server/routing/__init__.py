"""
Event delivery and room fan-out.

:class:`EventDelivery` knows the transport for every attached connection and
the fan-out channel (set of subscribed connection ids) for every room. The
room and direct-message routers build on it.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional, Set

from TermChat.core.message.protocol import Event
from TermChat.core.server.interfaces import TransportConnection

logger = logging.getLogger(__name__)


class DeliveryStatus(Enum):
    """Status of message delivery."""
    DELIVERED = auto()
    FAILED = auto()
    NOT_CONNECTED = auto()


@dataclass
class DeliveryResult:
    """Result of delivering one event to one connection."""
    status: DeliveryStatus
    connection_id: str
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


class EventDelivery:
    """
    Pushes events to live connections.

    Holds the only references to transport objects; everything else in the
    core addresses connections by id.
    """

    def __init__(self):
        self._transports: Dict[str, TransportConnection] = {}
        self._channels: Dict[str, Set[str]] = {}

    def attach(self, transport: TransportConnection) -> None:
        self._transports[transport.connection_id] = transport

    def detach(self, connection_id: str) -> Optional[TransportConnection]:
        """Forget a connection and drop it from every fan-out channel."""
        for room in [r for r, members in self._channels.items() if connection_id in members]:
            self.unsubscribe(connection_id, room)
        return self._transports.pop(connection_id, None)

    def transport(self, connection_id: str) -> Optional[TransportConnection]:
        return self._transports.get(connection_id)

    def subscribe(self, connection_id: str, room: str) -> None:
        self._channels.setdefault(room, set()).add(connection_id)

    def unsubscribe(self, connection_id: str, room: str) -> None:
        members = self._channels.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channels[room]

    def subscribers(self, room: str) -> Set[str]:
        return set(self._channels.get(room, ()))

    async def send(self, connection_id: str, event: Event) -> DeliveryResult:
        """Send an event to a single connection."""
        transport = self._transports.get(connection_id)
        if transport is None or not transport.is_open():
            return DeliveryResult(DeliveryStatus.NOT_CONNECTED, connection_id, error="No connection")
        try:
            if await transport.send(event.serialize()):
                return DeliveryResult(DeliveryStatus.DELIVERED, connection_id)
            return DeliveryResult(DeliveryStatus.FAILED, connection_id, error="Send failed")
        except Exception as e:
            logger.exception("Error sending %s to %s", event.type.value, connection_id)
            return DeliveryResult(DeliveryStatus.FAILED, connection_id, error=str(e))

    async def send_many(self, connection_ids: Iterable[str], event: Event) -> Dict[str, DeliveryResult]:
        targets: List[str] = list(dict.fromkeys(connection_ids))
        if not targets:
            return {}
        results = await asyncio.gather(*(self.send(cid, event) for cid in targets))
        return dict(zip(targets, results))

    async def to_room(
        self,
        room: str,
        event: Event,
        exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, DeliveryResult]:
        """Fan an event out to every connection subscribed to ``room``."""
        skip = set(exclude or ())
        return await self.send_many(
            (cid for cid in self.subscribers(room) if cid not in skip), event
        )

    async def to_all(
        self,
        event: Event,
        exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, DeliveryResult]:
        """Broadcast an event to every attached connection."""
        skip = set(exclude or ())
        return await self.send_many(
            (cid for cid in list(self._transports) if cid not in skip), event
        )


class OrderedLanes:
    """
    FIFO lanes keyed by room or conversation.

    Work that must reach recipients in acceptance order holds the lane for
    its key; :class:`asyncio.Lock` wakes waiters in request order.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def lane(self, key: str) -> '_Lane':
        return _Lane(self, key)

    def __len__(self) -> int:
        return len(self._locks)

    async def _acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user(key)
            raise

    def _release(self, key: str) -> None:
        self._locks[key].release()
        self._release_user(key)

    def _release_user(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]


class _Lane:
    def __init__(self, lanes: OrderedLanes, key: str):
        self._lanes = lanes
        self._key = key

    async def __aenter__(self) -> None:
        await self._lanes._acquire(self._key)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._lanes._release(self._key)


__all__ = [
    'DeliveryStatus',
    'DeliveryResult',
    'EventDelivery',
    'OrderedLanes',
]
