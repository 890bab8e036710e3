"""
Test configuration and fixtures for TermChat server tests.

Provides:
- An in-memory directory with a few rooms
- A chat core wired to in-memory storage
- Helpers to bring users online on recording connections
"""

import pytest
import pytest_asyncio

from TermChat.core.logging import configure_logging, create_testing_config
from TermChat.core.server.chat import ChatCore
from TermChat.core.server.storage_memory import InMemoryDirectory, InMemoryMessageLog
from TermChat.test.fakes import connect_user


@pytest.fixture(scope="session", autouse=True)
def testing_logging():
    """Console-only logging for the whole run."""
    configure_logging(create_testing_config())


@pytest.fixture
def directory() -> InMemoryDirectory:
    directory = InMemoryDirectory()
    directory.add_room("general", allowed=["alice", "bob"])
    directory.add_room("random", allowed=["alice", "bob", "carol"])
    directory.add_room("vault", allowed=["alice", "bob", "mallory"], banned=["mallory"])
    directory.add_user("carol")
    directory.add_user("dave")
    return directory


@pytest.fixture
def message_log() -> InMemoryMessageLog:
    return InMemoryMessageLog()


@pytest.fixture
def core(directory, message_log) -> ChatCore:
    return ChatCore(directory, message_log, history_limit=20, room_cache_ttl=300)


@pytest_asyncio.fixture
async def alice(core):
    return await connect_user(core, "alice")


@pytest_asyncio.fixture
async def bob(core):
    return await connect_user(core, "bob")


@pytest_asyncio.fixture
async def carol(core):
    return await connect_user(core, "carol")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
