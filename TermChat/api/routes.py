"""
HTTP API for TermChat.

Read-only endpoints served next to the WebSocket server: the room listing
and a health check.
"""

import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from TermChat import __version__
from TermChat.config import config
from TermChat.core.server.chat import ChatCore

logger = logging.getLogger(__name__)


class RoomListResponse(BaseModel):
    rooms: List[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    online_users: int


def create_app(core: ChatCore) -> FastAPI:
    """Build the API application around a chat core."""
    app = FastAPI(title="TermChat API", version=__version__)

    @app.get("/api/rooms", response_model=RoomListResponse)
    async def list_rooms():
        try:
            rooms = await core.list_room_names()
        except Exception:
            logger.exception("Listing rooms failed")
            raise HTTPException(status_code=503, detail="Room directory unavailable")
        return RoomListResponse(rooms=rooms)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", version=__version__, online_users=len(core.registry))

    return app


def run(core: ChatCore, host: Optional[str] = None, api_port: Optional[int] = None) -> None:
    """
    Run the API with Uvicorn.

    Args:
        core: Chat core whose rooms and connections are reported
        host: Bind address (default: config.DEFAULT_HOST)
        api_port: Port for the api (default: config.DEFAULT_API_PORT)
    """
    uvicorn.run(create_app(core), host=host or config.DEFAULT_HOST,
                port=api_port or config.DEFAULT_API_PORT, log_config=None)
