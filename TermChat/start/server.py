"""
Server startup module for TermChat.
Starts the WebSocket chat server and, unless disabled, the HTTP API.
"""

import asyncio
import logging
import threading
from typing import Optional

from TermChat import api as _api
from TermChat.config import config
from TermChat.core.server.websocket_manager import create_server

logger = logging.getLogger(__name__)


def server(host: Optional[str] = None, port: Optional[int] = None, srv_only: bool = False,
           db_path: Optional[str] = None) -> None:
    """
    Start the chat server on the specified port.

    Args:
        host: Address to listen on
        port: WebSocket port; the API listens on ``port + 1``
        srv_only: If True, do not start the HTTP API
        db_path: SQLite database file
    """
    host = host or config.DEFAULT_HOST
    port = port or config.DEFAULT_SERVER_PORT
    ws_server = create_server(db_path=db_path)

    async def start_websocket_server():
        async with ws_server.run(host, port):
            await asyncio.Future()

    def start_http_server():
        _api.run(ws_server.core, host=host, api_port=port + 1)

    try:
        if not srv_only:
            http_thread = threading.Thread(target=start_http_server, daemon=True)
            http_thread.start()

        asyncio.run(start_websocket_server())
    except KeyboardInterrupt:
        logger.info("Closed by user.")
