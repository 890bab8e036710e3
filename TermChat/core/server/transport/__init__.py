"""
Transport layer for WebSocket connections.

Wraps a ``websockets`` server connection so the chat core can push frames
to it by connection id without knowing anything about WebSockets.
"""

import logging
import uuid
from typing import Optional

from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Wrapper around ServerConnection that implements TransportConnection.

    Sending never raises: a failed send marks the result False and the
    receive loop notices the closed socket on its own.
    """

    def __init__(self, websocket: ServerConnection, connection_id: Optional[str] = None):
        """
        Initialize WebSocket connection wrapper.

        Args:
            websocket: Underlying WebSocket connection
            connection_id: Id to register under; a random one by default
        """
        self._websocket = websocket
        self._closed = False
        self.connection_id: str = connection_id or uuid.uuid4().hex

    @property
    def raw_websocket(self) -> ServerConnection:
        """Get underlying WebSocket connection."""
        return self._websocket

    @property
    def remote_address(self):
        return getattr(self._websocket, "remote_address", None)

    async def send(self, message: str) -> bool:
        """
        Send a text frame.

        Returns:
            True if the frame was handed to the socket
        """
        if self._closed:
            return False

        try:
            await self._websocket.send(message)
            return True
        except Exception as e:
            logger.debug("Failed to send to %s: %s", self.connection_id, e)
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self._closed:
            self._closed = True
            try:
                await self._websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug("Error closing connection %s: %s", self.connection_id, e)

    def is_open(self) -> bool:
        if self._closed:
            return False
        return self._websocket.state is State.OPEN

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.connection_id!r})"


__all__ = ['WebSocketConnection']
