"""
Contracts shared by the server components.

The routing core talks to the outside world through the protocols defined
here: a :class:`Directory` of rooms and users, a durable :class:`MessageLog`,
and :class:`TransportConnection` objects it can push frames to. Handler
outcomes are reported as :class:`HandlerResult` values, never as exceptions.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Failure classes reported back to the originating connection."""
    VALIDATION = "validation"
    ACCESS_DENIED = "access_denied"
    NOT_IN_ROOM = "not_in_room"
    RECIPIENT_OFFLINE = "recipient_offline"
    DEPENDENCY = "dependency"
    INTERNAL = "internal"


@dataclass
class HandlerResult:
    """
    Outcome of handling one intent.

    Attributes:
        ok: True when the intent took effect
        kind: Failure class, set only when ``ok`` is False
        message: Human-readable failure reason
        data: Extra reply payload for successful intents
    """
    ok: bool
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> 'HandlerResult':
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> 'HandlerResult':
        return cls(ok=False, kind=kind, message=message)

    def to_ack(self) -> Dict[str, Any]:
        """Payload of the ``ack`` frame answering the intent."""
        if self.ok:
            return {"status": "ok", **self.data}
        return {"status": "error", "kind": self.kind.value, "msg": self.message}


@dataclass
class AuthResult:
    """Result of an authentication attempt."""
    success: bool
    username: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class RoomRecord:
    """A room as known to the directory."""
    name: str
    allowed_users: FrozenSet[str] = frozenset()
    banned_users: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class MessageEnvelope:
    """A message the core asks the log to persist; exactly one of room/recipient is set."""
    sender: str
    text: str
    timestamp: float
    room: Optional[str] = None
    recipient: Optional[str] = None


@dataclass(frozen=True)
class StoredMessage:
    """An immutable message as held by the log."""
    id: int
    sender: str
    text: str
    timestamp: float
    room: Optional[str] = None
    recipient: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "room": self.room,
            "text": self.text,
            "timestamp": self.timestamp,
        }


class Authenticator(Protocol):
    """Protocol for connection authenticators."""

    async def authenticate(self, token: str) -> AuthResult:
        """
        Authenticate a user using the provided token.

        Returns:
            AuthResult containing authentication status and username
        """
        ...

    def extract_token(self, transport_context: object) -> Optional[str]:
        """Pull the token out of a transport-specific context, or None."""
        ...


@runtime_checkable
class Directory(Protocol):
    """Read access to rooms and users."""

    async def find_room(self, name: str) -> Optional[RoomRecord]:
        """
        Look up a room.

        Returns:
            The room, or None when no room has that name

        Raises:
            Exception: when the directory cannot be reached
        """
        ...

    async def find_user(self, identity: str) -> bool:
        """True when a user account with that name exists."""
        ...

    async def list_room_names(self) -> List[str]:
        """Names of every room, sorted."""
        ...


@runtime_checkable
class MessageLog(Protocol):
    """Durable message storage."""

    async def append(self, envelope: MessageEnvelope) -> StoredMessage:
        """Persist a message and return the stored copy."""
        ...

    async def room_history(self, room: str, limit: int) -> List[StoredMessage]:
        """The most recent ``limit`` room messages, oldest first."""
        ...

    async def dm_history(self, user_a: str, user_b: str, limit: int) -> List[StoredMessage]:
        """The most recent ``limit`` messages between two users in either direction, oldest first."""
        ...


@runtime_checkable
class TransportConnection(Protocol):
    """A live connection the server can push frames to."""

    connection_id: str

    async def send(self, message: str) -> bool:
        """Send a frame; False when the connection is gone."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection."""
        ...

    def is_open(self) -> bool:
        """Check if connection is open."""
        ...


class HookPhase(Enum):
    """Points in a connection's life where hooks run."""
    POST_AUTHENTICATE = auto()
    POST_CONNECT = auto()
    PRE_INTENT = auto()
    POST_INTENT = auto()
    PRE_DISCONNECT = auto()
    POST_DISCONNECT = auto()


@dataclass
class HookContext:
    """Context passed to hook functions."""
    phase: HookPhase
    user_id: Optional[str] = None
    connection_id: Optional[str] = None
    intent: Optional[Any] = None
    result: Optional[HandlerResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.metadata[key] = value


HookFunction = Callable[[HookContext], Optional[HookContext]]


class ServerLifecycle(ABC):
    """Abstract base class for server lifecycle management."""

    @abstractmethod
    async def start(self, host: str, port: int) -> None:
        """Start the server."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the server."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if server is running."""


class HookAwareComponent:
    """Base class for components that run registered hooks."""

    def __init__(self):
        self._hooks: Dict[HookPhase, List[tuple[int, HookFunction]]] = {}

    def register_hook(
        self,
        phase: HookPhase,
        hook: HookFunction,
        priority: int = 100
    ) -> None:
        """
        Register a hook for a specific phase.

        Args:
            phase: Phase to hook into
            hook: Hook function
            priority: Lower numbers execute first
        """
        hooks = self._hooks.setdefault(phase, [])
        hooks.append((priority, hook))
        hooks.sort(key=lambda item: item[0])

    def unregister_hook(self, phase: HookPhase, hook: HookFunction) -> bool:
        """Remove a hook; True if it was registered."""
        for i, (_, registered) in enumerate(self._hooks.get(phase, [])):
            if registered == hook:
                self._hooks[phase].pop(i)
                return True
        return False

    async def _execute_hooks(self, phase: HookPhase, context: HookContext) -> HookContext:
        """
        Run every hook for ``phase`` in priority order.

        A hook may return a replacement context. A hook that raises is
        logged and skipped; the remaining hooks still run.
        """
        context.phase = phase
        for _, hook in self._hooks.get(phase, []):
            try:
                modified = hook(context)
                if modified is not None:
                    context = modified
            except Exception:
                logger.exception("Hook %r failed during %s", hook, phase.name)
        return context


__all__ = [
    'ErrorKind',
    'HandlerResult',
    'AuthResult',
    'Authenticator',
    'RoomRecord',
    'MessageEnvelope',
    'StoredMessage',
    'Directory',
    'MessageLog',
    'TransportConnection',
    'HookPhase',
    'HookContext',
    'HookFunction',
    'ServerLifecycle',
    'HookAwareComponent',
]
