"""
Server module for TermChat.

Architecture Overview:
---------------------

1. **Connection Registry** (`session/`)
   - ConnectionRegistry: live connection ids, their identity, room and DM peers
   - One live connection per identity; a new login replaces the old one

2. **Access Gate** (`access/`)
   - AccessGate: room allow-list / ban-list checks against a Directory

3. **Routing** (`routing/`)
   - EventDelivery: transports by connection id and per-room fan-out channels
   - OrderedLanes: FIFO lanes that keep per-room and per-conversation order
   - RoomRouter (`routing/rooms.py`): join, leave, room messages, typing
   - DirectMessageRouter (`routing/direct.py`): direct messages and history

4. **Presence** (`presence.py`)
   - PresenceCoordinator: online/offline status and the disconnect cascade

5. **Chat Core** (`chat.py`)
   - ChatCore: composes the above and dispatches intents

6. **WebSocket Server** (`websocket_manager.py`, `transport/`, `auth/`)
   - ChatServer: JWT handshake, frame loop, acks, hooks
   - WebSocketConnection: connection wrapper

7. **Storage** (`storage_memory.py`, `storage_sqlite.py`)
   - In-memory and SQLite implementations of Directory and MessageLog

Usage:
------

    from TermChat.core.server import ChatServer, ChatCore, HookPhase
    from TermChat.core.server.storage_memory import InMemoryDirectory, InMemoryMessageLog

    directory = InMemoryDirectory()
    directory.add_room("general", allowed=["alice", "bob"])
    server = ChatServer(ChatCore(directory, InMemoryMessageLog()))

    async with server.run("localhost", 8765):
        await asyncio.Future()
"""

from .access import AccessDecision, AccessGate
from .auth import AuthenticationMiddleware, DefaultTokenExtractor, JWTAuthenticator, issue_token
from .chat import ChatCore
from .interfaces import (
    AuthResult,
    Directory,
    ErrorKind,
    HandlerResult,
    HookAwareComponent,
    HookContext,
    HookFunction,
    HookPhase,
    MessageEnvelope,
    MessageLog,
    RoomRecord,
    ServerLifecycle,
    StoredMessage,
    TransportConnection,
)
from .presence import PresenceCoordinator
from .routing import DeliveryResult, DeliveryStatus, EventDelivery, OrderedLanes
from .routing.direct import DirectMessageRouter
from .routing.rooms import RoomRouter
from .session import ConnectionRecord, ConnectionRegistry
from .transport import WebSocketConnection
from .websocket_manager import ChatServer, create_server

__all__ = [
    'AccessDecision',
    'AccessGate',
    'AuthenticationMiddleware',
    'DefaultTokenExtractor',
    'JWTAuthenticator',
    'issue_token',
    'ChatCore',
    'AuthResult',
    'Directory',
    'ErrorKind',
    'HandlerResult',
    'HookAwareComponent',
    'HookContext',
    'HookFunction',
    'HookPhase',
    'MessageEnvelope',
    'MessageLog',
    'RoomRecord',
    'ServerLifecycle',
    'StoredMessage',
    'TransportConnection',
    'PresenceCoordinator',
    'DeliveryResult',
    'DeliveryStatus',
    'EventDelivery',
    'OrderedLanes',
    'DirectMessageRouter',
    'RoomRouter',
    'ConnectionRecord',
    'ConnectionRegistry',
    'WebSocketConnection',
    'ChatServer',
    'create_server',
]
