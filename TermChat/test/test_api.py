from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from TermChat import __version__
from TermChat.api.routes import create_app
from TermChat.core.server.chat import ChatCore


class TestRoomsEndpoint:
    """Tests for GET /api/rooms."""

    def test_lists_rooms(self, core):
        client = TestClient(create_app(core))

        response = client.get("/api/rooms")

        assert response.status_code == 200
        assert response.json() == {"rooms": ["general", "random", "vault"]}

    def test_uses_cached_names(self, directory, message_log):
        core = ChatCore(directory, message_log, room_cache_ttl=300)
        client = TestClient(create_app(core))
        client.get("/api/rooms")
        directory.add_room("late", allowed=["alice"])

        assert "late" not in client.get("/api/rooms").json()["rooms"]

        core.invalidate_room_cache()
        assert "late" in client.get("/api/rooms").json()["rooms"]

    def test_directory_failure(self, core, directory):
        directory.list_room_names = AsyncMock(side_effect=ConnectionError("down"))
        client = TestClient(create_app(core))

        response = client.get("/api/rooms")

        assert response.status_code == 503
        assert response.json() == {"detail": "Room directory unavailable"}


class TestHealthEndpoint:

    def test_no_one_online(self, core):
        response = TestClient(create_app(core)).get("/api/health")

        assert response.json() == {"status": "ok", "version": __version__, "online_users": 0}

    @pytest.mark.asyncio
    async def test_counts_connections(self, core, alice, bob):
        response = TestClient(create_app(core)).get("/api/health")

        assert response.json()["online_users"] == 2
