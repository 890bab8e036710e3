"""
Configuration module for TermChat.
Stores all server settings, read from the environment where provided.
"""

import os
from typing import Dict, Any


class Config:
    """Application configuration class."""

    # JWT Configuration
    JWT_SECRET = os.environ.get("JWT_SECRET", "default-secret-key-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRE_MINUTES = int(os.environ.get("TERMCHAT_JWT_EXPIRE_MINUTES", "1440"))

    # Server Configuration
    DEFAULT_HOST = os.environ.get("TERMCHAT_HOST", "localhost")
    DEFAULT_SERVER_PORT = int(os.environ.get("TERMCHAT_PORT", "8765"))
    DEFAULT_API_PORT = int(os.environ.get("TERMCHAT_API_PORT", "8766"))

    # SQLite database (rooms, users, message log)
    SQLITE_DB_FILE = os.environ.get("TERMCHAT_DB", "termchat.db")

    # Messaging limits
    MESSAGE_HISTORY_LIMIT = int(os.environ.get("TERMCHAT_HISTORY_LIMIT", "20"))
    MAX_MESSAGE_LENGTH = 1000

    # Seconds the room-name listing is cached for
    ROOM_CACHE_TTL = int(os.environ.get("TERMCHAT_ROOM_CACHE_TTL", "300"))

    # Reject tokens for users the directory has no account for
    REQUIRE_KNOWN_USERS = os.environ.get("TERMCHAT_REQUIRE_KNOWN_USERS", "0").lower() in ("1", "true", "yes")

    # Logging environment preset (development, production, testing)
    LOG_ENV = os.environ.get("TERMCHAT_ENV", "development")

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "JWT_SECRET": cls.JWT_SECRET,
            "JWT_ALGORITHM": cls.JWT_ALGORITHM,
            "JWT_EXPIRE_MINUTES": cls.JWT_EXPIRE_MINUTES,
            "DEFAULT_HOST": cls.DEFAULT_HOST,
            "DEFAULT_SERVER_PORT": cls.DEFAULT_SERVER_PORT,
            "DEFAULT_API_PORT": cls.DEFAULT_API_PORT,
            "SQLITE_DB_FILE": cls.SQLITE_DB_FILE,
            "MESSAGE_HISTORY_LIMIT": cls.MESSAGE_HISTORY_LIMIT,
            "MAX_MESSAGE_LENGTH": cls.MAX_MESSAGE_LENGTH,
            "ROOM_CACHE_TTL": cls.ROOM_CACHE_TTL,
            "REQUIRE_KNOWN_USERS": cls.REQUIRE_KNOWN_USERS,
            "LOG_ENV": cls.LOG_ENV,
        }


# Create config instance
config = Config()
