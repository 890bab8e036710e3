"""
Room routing: join, leave, room messages, rosters and typing indicators.

Room membership lives in the connection registry (``current_room``) and is
mirrored by the room's fan-out channel in :class:`EventDelivery`; both are
changed together, in the same synchronous step. After every await the
connection's state is read again and the operation is abandoned if it no
longer holds.
"""

import logging
from typing import List, Optional

from TermChat.config import config
from TermChat.core.message.protocol import Event, EventType
from TermChat.core.server.access import AccessDecision, AccessGate
from TermChat.core.server.interfaces import ErrorKind, HandlerResult, MessageEnvelope, MessageLog
from TermChat.core.server.routing import EventDelivery, OrderedLanes
from TermChat.core.server.session import ConnectionRegistry
from TermChat.core.server.utils.helpers import (
    create_error_event,
    create_roster_event,
    create_room_message_event,
    is_valid_message,
    is_valid_room_name,
    now,
    sanitize_text,
    serialize_history,
)

logger = logging.getLogger(__name__)

NOT_IN_ROOM_MESSAGE = "You are not in this room."
JOIN_OVERTAKEN_MESSAGE = "Left the room before the join completed."


class RoomRouter:
    """State transitions and fan-out for rooms."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        gate: AccessGate,
        delivery: EventDelivery,
        message_log: MessageLog,
        history_limit: Optional[int] = None,
        lanes: Optional[OrderedLanes] = None
    ):
        self._registry = registry
        self._gate = gate
        self._delivery = delivery
        self._log = message_log
        self._history_limit = history_limit or config.MESSAGE_HISTORY_LIMIT
        self._lanes = lanes or OrderedLanes()

    def list_members(self, room: str) -> List[str]:
        return list(self._registry.members_of_room(room))

    async def broadcast_roster(self, room: str) -> None:
        """Send the current roster of ``room`` to everyone subscribed to it."""
        await self._delivery.to_room(room, create_roster_event(self._registry.members_of_room(room)))

    async def join(self, connection_id: str, identity: str, room: str) -> HandlerResult:
        """
        Move a connection into ``room``.

        On success the joiner receives ``join-room-success`` then
        ``room-history``, and every member receives the new roster. On any
        denial the joiner receives ``join-room-error`` and nothing changes.
        A join overtaken by a later join or leave returns ``NOT_IN_ROOM``.
        """
        if not is_valid_room_name(room):
            return await self._reject_join(connection_id, ErrorKind.VALIDATION, "Invalid room name format")

        decision = await self._gate.check_room_access(identity, room)
        if not decision.granted:
            kind = (ErrorKind.DEPENDENCY if decision is AccessDecision.DENIED_LOOKUP_FAILED
                    else ErrorKind.ACCESS_DENIED)
            logger.info("Join denied: %s -> %s (%s)", identity, room, decision.name)
            return await self._reject_join(connection_id, kind, decision.reason)

        record = self._registry.lookup_by_connection(connection_id)
        if record is None or record.identity != identity:
            logger.warning("Join aborted: connection %s (%s) vanished during access check",
                           connection_id, identity)
            return HandlerResult.failure(ErrorKind.INTERNAL, "Connection is no longer registered")

        # No await until both the registry and the channels name the new room.
        previous = record.current_room
        moved = previous is not None and previous != room
        self._registry.set_room(connection_id, room)
        if moved:
            self._delivery.unsubscribe(connection_id, previous)
        self._delivery.subscribe(connection_id, room)

        if moved:
            await self.broadcast_roster(previous)
            if not self._in_room(connection_id, room):
                return self._overtaken(connection_id, room)

        await self._delivery.send(connection_id, Event(EventType.JOIN_ROOM_SUCCESS, {"room": room}))

        try:
            history = await self._log.room_history(room, self._history_limit)
        except Exception:
            logger.exception("Loading history for room %s failed (connection=%s, identity=%s)",
                             room, connection_id, identity)
            await self._delivery.send(
                connection_id,
                create_error_event("Could not load room history", ErrorKind.DEPENDENCY.value),
            )
            history = None

        if not self._in_room(connection_id, room):
            return self._overtaken(connection_id, room)

        if history is not None:
            await self._delivery.send(connection_id, Event(EventType.ROOM_HISTORY, serialize_history(history)))
        await self.broadcast_roster(room)
        logger.info("User %s joined room %s", identity, room)
        return HandlerResult.success(room=room)

    async def leave(self, connection_id: str, room: str) -> HandlerResult:
        """Leave ``room``; refused unless it is the connection's current room."""
        if not self._in_room(connection_id, room):
            return HandlerResult.failure(ErrorKind.NOT_IN_ROOM, NOT_IN_ROOM_MESSAGE)
        await self._vacate(connection_id, room)
        logger.info("Connection %s left room %s", connection_id, room)
        return HandlerResult.success(room=room)

    async def send_message(self, connection_id: str, room: str, text: str) -> HandlerResult:
        """
        Persist a room message, then fan it out to the room, sender included.

        Membership is checked before persisting and again before the
        broadcast; if the sender left in between, nothing is broadcast.
        """
        if not is_valid_message(text):
            return HandlerResult.failure(
                ErrorKind.VALIDATION,
                f"Invalid message format or too long (max {config.MAX_MESSAGE_LENGTH} chars)",
            )
        record = self._registry.lookup_by_connection(connection_id)
        if record is None:
            return HandlerResult.failure(ErrorKind.INTERNAL, "Connection is no longer registered")
        if record.current_room != room:
            return HandlerResult.failure(ErrorKind.NOT_IN_ROOM, NOT_IN_ROOM_MESSAGE)

        envelope = MessageEnvelope(sender=record.identity, text=sanitize_text(text),
                                   timestamp=now(), room=room)
        async with self._lanes.lane(f"room:{room}"):
            try:
                stored = await self._log.append(envelope)
            except Exception:
                logger.exception("Persisting message failed (connection=%s, identity=%s, room=%s)",
                                 connection_id, record.identity, room)
                return HandlerResult.failure(ErrorKind.DEPENDENCY, "Server error")

            if not self._in_room(connection_id, room):
                logger.info("Dropped broadcast from %s: left %s while message was persisted",
                            record.identity, room)
                return HandlerResult.failure(ErrorKind.NOT_IN_ROOM, NOT_IN_ROOM_MESSAGE)

            await self._delivery.to_room(room, create_room_message_event(stored))
        return HandlerResult.success(id=stored.id, timestamp=stored.timestamp)

    async def send_roster(self, connection_id: str, room: str) -> HandlerResult:
        """Reply to ``get-users`` with the roster of ``room``, to the caller only."""
        members = self.list_members(room)
        await self._delivery.send(connection_id, Event(EventType.USERS_LIST, members))
        return HandlerResult.success(users=members)

    async def typing(self, connection_id: str, room: str, active: bool = True) -> HandlerResult:
        """Tell the rest of the room that this user started or stopped typing."""
        record = self._registry.lookup_by_connection(connection_id)
        if record is None or record.current_room != room:
            return HandlerResult.failure(ErrorKind.NOT_IN_ROOM, NOT_IN_ROOM_MESSAGE)
        event_type = EventType.USER_TYPING if active else EventType.USER_STOP_TYPING
        await self._delivery.to_room(room, Event(event_type, {"username": record.identity}),
                                     exclude=[connection_id])
        return HandlerResult.success()

    async def _reject_join(self, connection_id: str, kind: ErrorKind, reason: str) -> HandlerResult:
        await self._delivery.send(connection_id, Event(EventType.JOIN_ROOM_ERROR, {"msg": reason}))
        return HandlerResult.failure(kind, reason)

    # noinspection PyMethodMayBeStatic
    def _overtaken(self, connection_id: str, room: str) -> HandlerResult:
        logger.debug("Connection %s left %s before join completed", connection_id, room)
        return HandlerResult.failure(ErrorKind.NOT_IN_ROOM, JOIN_OVERTAKEN_MESSAGE)

    async def _vacate(self, connection_id: str, room: str) -> None:
        self._registry.set_room(connection_id, None)
        self._delivery.unsubscribe(connection_id, room)
        await self.broadcast_roster(room)

    def _in_room(self, connection_id: str, room: str) -> bool:
        record = self._registry.lookup_by_connection(connection_id)
        return record is not None and record.current_room == room


__all__ = ['RoomRouter', 'NOT_IN_ROOM_MESSAGE', 'JOIN_OVERTAKEN_MESSAGE']
