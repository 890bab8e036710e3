"""
Direct-message routing.

A DM is always persisted. Live delivery is attempted once: if the recipient
is online the message goes to them and is echoed to the sender, otherwise
the sender gets a ``dm-error`` and the recipient finds the message in their
history later. Both sides of an exchange are recorded as active DM peers so
either can be told when the other disconnects.
"""

import logging
from typing import Optional

from TermChat.config import config
from TermChat.core.message.protocol import Event, EventType
from TermChat.core.server.interfaces import ErrorKind, HandlerResult, MessageEnvelope, MessageLog
from TermChat.core.server.routing import EventDelivery, OrderedLanes
from TermChat.core.server.session import ConnectionRegistry
from TermChat.core.server.utils.helpers import (
    create_dm_event,
    is_valid_message,
    is_valid_username,
    now,
    sanitize_text,
    serialize_history,
)

logger = logging.getLogger(__name__)


def conversation_key(user_a: str, user_b: str) -> str:
    a, b = sorted((user_a, user_b))
    return f"dm:{a}:{b}"


class DirectMessageRouter:
    """Point-to-point delivery between two identities."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        delivery: EventDelivery,
        message_log: MessageLog,
        history_limit: Optional[int] = None,
        lanes: Optional[OrderedLanes] = None
    ):
        self._registry = registry
        self._delivery = delivery
        self._log = message_log
        self._history_limit = history_limit or config.MESSAGE_HISTORY_LIMIT
        self._lanes = lanes or OrderedLanes()

    async def send(self, sender: str, recipient: str, text: str) -> HandlerResult:
        """
        Persist and deliver a direct message.

        Returns:
            Success when the recipient was online and received it;
            ``RECIPIENT_OFFLINE`` when it was only persisted.
        """
        if not is_valid_username(recipient):
            return HandlerResult.failure(ErrorKind.VALIDATION, "Invalid recipient username format")
        if recipient == sender:
            return HandlerResult.failure(ErrorKind.VALIDATION, "Cannot send a direct message to yourself")
        if not is_valid_message(text):
            return HandlerResult.failure(
                ErrorKind.VALIDATION,
                f"Invalid message format or too long (max {config.MAX_MESSAGE_LENGTH} chars)",
            )

        sender_cid = self._registry.lookup_by_identity(sender)
        if sender_cid is None:
            logger.warning("DM from %s to %s dropped: sender has no live connection", sender, recipient)
            return HandlerResult.failure(ErrorKind.INTERNAL, "Connection is no longer registered")
        self._mark_peers(sender, recipient)

        envelope = MessageEnvelope(sender=sender, text=sanitize_text(text),
                                   timestamp=now(), recipient=recipient)
        async with self._lanes.lane(conversation_key(sender, recipient)):
            try:
                stored = await self._log.append(envelope)
            except Exception:
                logger.exception("Persisting DM failed (from=%s, to=%s)", sender, recipient)
                return HandlerResult.failure(ErrorKind.DEPENDENCY, "Server error")

            # Either side may have connected or disconnected while persisting.
            sender_cid = self._registry.lookup_by_identity(sender)
            recipient_cid = self._registry.lookup_by_identity(recipient)
            if recipient_cid is None:
                notice = f"User {recipient} is not online."
                if sender_cid is not None:
                    await self._delivery.send(sender_cid, Event(EventType.DM_ERROR, {"msg": notice}))
                return HandlerResult.failure(ErrorKind.RECIPIENT_OFFLINE, notice)

            self._mark_peers(sender, recipient)
            targets = [recipient_cid] + ([sender_cid] if sender_cid is not None else [])
            await self._delivery.send_many(targets, create_dm_event(stored))

        logger.info("DM from %s to %s", sender, recipient)
        return HandlerResult.success(id=stored.id, timestamp=stored.timestamp)

    async def history(self, requester: str, peer: str) -> HandlerResult:
        """Send the recent conversation between ``requester`` and ``peer`` to the requester."""
        if not is_valid_username(peer):
            return HandlerResult.failure(ErrorKind.VALIDATION, "Invalid username format")
        self._mark_peers(requester, peer)

        try:
            messages = await self._log.dm_history(requester, peer, self._history_limit)
        except Exception:
            logger.exception("Loading DM history failed (requester=%s, peer=%s)", requester, peer)
            return HandlerResult.failure(ErrorKind.DEPENDENCY, "Server error")

        requester_cid = self._registry.lookup_by_identity(requester)
        if requester_cid is not None:
            await self._delivery.send(requester_cid, Event(EventType.DM_HISTORY, {
                "peer": peer,
                "messages": serialize_history(messages),
            }))
        return HandlerResult.success(peer=peer, count=len(messages))

    def _mark_peers(self, user_a: str, user_b: str) -> None:
        """Record each online side as an active DM peer of the other."""
        for identity, other in ((user_a, user_b), (user_b, user_a)):
            cid = self._registry.lookup_by_identity(identity)
            if cid is not None:
                self._registry.add_dm_peer(cid, other)


__all__ = ['DirectMessageRouter', 'conversation_key']
