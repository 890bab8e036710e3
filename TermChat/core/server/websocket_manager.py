"""
WebSocket server that feeds connections into the chat core.

This is the main entry point that orchestrates authentication, connection
registration, frame decoding and dispatch, and cleanup.

Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                          ChatServer                          │
    │  ┌──────────────┐  ┌──────────────┐  ┌────────────────────┐  │
    │  │ Auth         │  │ Frame        │  │ Hooks              │  │
    │  │ Middleware   │  │ Decoding     │  │ (Pre/Post Intent)  │  │
    │  └──────────────┘  └──────────────┘  └────────────────────┘  │
    │  ┌────────────────────────────────────────────────────────┐  │
    │  │ ChatCore: Registry, Access Gate, Room/DM Routers,      │  │
    │  │           Presence & Disconnect Coordinator            │  │
    │  └────────────────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────────────┘

Hook Execution Order:
    1. POST_AUTHENTICATE → POST_CONNECT
    2. PRE_INTENT → [ChatCore.handle] → POST_INTENT
    3. PRE_DISCONNECT → [cleanup] → POST_DISCONNECT
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import websockets
from websockets.asyncio.server import ServerConnection, serve

from TermChat.config import config
from TermChat.core.message.protocol import Frame, Intent, JoinRoom, ProtocolError, parse_intent
from TermChat.core.server.auth import AuthenticationMiddleware, JWTAuthenticator
from TermChat.core.server.chat import ChatCore
from TermChat.core.server.interfaces import (
    AuthResult,
    Directory,
    ErrorKind,
    HandlerResult,
    HookAwareComponent,
    HookContext,
    HookPhase,
    MessageLog,
    ServerLifecycle,
)
from TermChat.core.server.transport import WebSocketConnection
from TermChat.core.server.utils.helpers import create_ack_event, create_error_event

logger = logging.getLogger(__name__)


def _reported_by_router(intent: Intent, result: HandlerResult) -> bool:
    """True when the router already told the client about this failure."""
    if isinstance(intent, JoinRoom):
        # Overtaken joins get no join-room-error.
        return result.kind is not ErrorKind.NOT_IN_ROOM
    return result.kind is ErrorKind.RECIPIENT_OFFLINE


class ChatServer(HookAwareComponent, ServerLifecycle):
    """
    WebSocket front end for a :class:`ChatCore`.

    Example:
        server = ChatServer(ChatCore(directory, message_log))
        server.register_hook(HookPhase.PRE_INTENT, my_hook)

        async with server.run("localhost", 8765):
            await asyncio.Future()
    """

    def __init__(
        self,
        core: ChatCore,
        authenticator: Optional[JWTAuthenticator] = None,
        require_known_users: Optional[bool] = None
    ):
        """
        Initialize the WebSocket server.

        Args:
            core: Chat core that owns all connection state
            authenticator: JWT authenticator (creates default if None)
            require_known_users: Reject tokens for users the directory does not know
        """
        super().__init__()
        self._core = core
        self._authenticator = authenticator or JWTAuthenticator()
        self._auth_middleware = AuthenticationMiddleware(self._authenticator)
        self._require_known_users = (config.REQUIRE_KNOWN_USERS if require_known_users is None
                                     else require_known_users)

        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._server = None
        self._running = False

    @property
    def core(self) -> ChatCore:
        return self._core

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        """Bound port; resolves port 0 to the one the OS picked."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @asynccontextmanager
    async def run(self, host: str = "localhost", port: int = 8765):
        """
        Run the WebSocket server as an async context manager.

        Yields:
            The server instance
        """
        await self.start(host, port)
        try:
            yield self
        finally:
            await self.stop()

    async def start(self, host: str = "localhost", port: int = 8765) -> None:
        self._host = host
        self._port = port
        self._server = await serve(self._handle_connection, host, port)
        self._running = True
        logger.info("WebSocket server started on ws://%s:%s", host, self.port)

    async def stop(self) -> None:
        self._running = False

        for connection_id in self._core.registry.all_connection_ids():
            transport = self._core.delivery.transport(connection_id)
            if transport is not None:
                await transport.close(1001, "Server shutting down")

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Authenticate, register, then serve frames until the socket closes."""
        connection = WebSocketConnection(websocket)
        username = None
        registered = False

        try:
            auth_result = await self._auth_middleware.authenticate_connection(websocket)
            hook_ctx = HookContext(phase=HookPhase.POST_AUTHENTICATE, connection_id=connection.connection_id)
            hook_ctx.set('auth_result', auth_result)
            hook_ctx = await self._execute_hooks(HookPhase.POST_AUTHENTICATE, hook_ctx)

            if not auth_result.success:
                await self._send_auth_error(connection, auth_result)
                return

            username = auth_result.username
            if self._require_known_users and not await self._is_known_user(connection, username):
                return

            registered = True
            displaced = await self._core.connect(connection.connection_id, username, connection)
            if displaced is not None:
                logger.info("User %s logged in again; replaced connection %s",
                            username, displaced.connection_id)

            hook_ctx.user_id = username
            await self._execute_hooks(HookPhase.POST_CONNECT, hook_ctx)
            logger.info("User %s connected from %s", username, connection.remote_address)

            await self._frame_loop(connection, username)

        except websockets.exceptions.ConnectionClosed:
            logger.debug("Connection closed for %s", username or "unknown")
        except Exception:
            logger.exception("Error handling connection %s (%s)", connection.connection_id, username)
        finally:
            if registered:
                await self._cleanup_connection(connection, username)

    async def _frame_loop(self, connection: WebSocketConnection, username: str) -> None:
        async for raw in connection.raw_websocket:
            await self._process_frame(connection, username, raw)
            if connection.connection_id not in self._core.registry:
                # Logged out, or replaced by a newer login.
                await connection.close(1000, "Logged out")
                break

    async def _process_frame(self, connection: WebSocketConnection, username: str, raw) -> None:
        try:
            frame = Frame.deserialize(raw)
        except ProtocolError as e:
            logger.debug("Bad frame from %s: %s", username, e)
            await connection.send(create_error_event(str(e), ErrorKind.VALIDATION.value).serialize())
            return

        try:
            intent = parse_intent(frame)
        except ProtocolError as e:
            result = HandlerResult.failure(ErrorKind.VALIDATION, str(e))
            if frame.id is None:
                await connection.send(create_error_event(str(e), ErrorKind.VALIDATION.value).serialize())
        else:
            hook_ctx = HookContext(
                phase=HookPhase.PRE_INTENT,
                user_id=username,
                connection_id=connection.connection_id,
                intent=intent,
            )
            hook_ctx = await self._execute_hooks(HookPhase.PRE_INTENT, hook_ctx)

            result = await self._core.handle(connection.connection_id, intent)

            hook_ctx.result = result
            await self._execute_hooks(HookPhase.POST_INTENT, hook_ctx)

            if not result.ok and frame.id is None and not _reported_by_router(intent, result):
                await connection.send(create_error_event(result.message, result.kind.value).serialize())

        if frame.id is not None:
            await connection.send(create_ack_event(frame.id, result.to_ack()).serialize())

    async def _cleanup_connection(self, connection: WebSocketConnection, username: str) -> None:
        hook_ctx = HookContext(
            phase=HookPhase.PRE_DISCONNECT,
            user_id=username,
            connection_id=connection.connection_id,
        )
        hook_ctx = await self._execute_hooks(HookPhase.PRE_DISCONNECT, hook_ctx)

        record = await self._core.disconnect(connection.connection_id)
        hook_ctx.set('record', record)
        await self._execute_hooks(HookPhase.POST_DISCONNECT, hook_ctx)
        if record is not None:
            logger.info("User %s disconnected", username)

    async def _is_known_user(self, connection: WebSocketConnection, username: str) -> bool:
        try:
            known = await self._core.is_known_user(username)
        except Exception:
            logger.exception("User lookup for %s failed", username)
            await connection.close(code=1011, reason="Directory unavailable")
            return False
        if not known:
            await self._send_auth_error(connection, AuthResult(
                success=False,
                error_message=f"Unknown user '{username}'",
                error_code="UNKNOWN_USER",
            ))
        return known

    # noinspection PyMethodMayBeStatic
    async def _send_auth_error(self, connection: WebSocketConnection, result: AuthResult) -> None:
        """Send authentication error and close connection."""
        logger.info("Rejected connection %s: %s", connection.connection_id, result.error_code)
        await connection.send(create_error_event(
            result.error_message or "Authentication failed", "unauthorized"
        ).serialize())
        await connection.close(code=1008, reason=result.error_code or "Unauthorized")


def create_server(
    directory: Optional[Directory] = None,
    message_log: Optional[MessageLog] = None,
    db_path: Optional[str] = None,
    **kwargs
) -> ChatServer:
    """
    Factory function to create a configured WebSocket server.

    Without an explicit directory and message log, both are backed by the
    SQLite database at ``db_path`` (default ``config.SQLITE_DB_FILE``).

    Args:
        directory: Room and user directory
        message_log: Message storage
        db_path: SQLite database file
        **kwargs: Additional arguments passed to ChatServer
    """
    if directory is None or message_log is None:
        from TermChat.core.server.storage_sqlite import SQLiteDirectory, SQLiteMessageLog, SQLiteStore
        store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
        directory = directory or SQLiteDirectory(store)
        message_log = message_log or SQLiteMessageLog(store)
    return ChatServer(ChatCore(directory, message_log), **kwargs)


__all__ = ['ChatServer', 'create_server']
