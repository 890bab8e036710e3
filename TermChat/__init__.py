"""
TermChat Project - a multi-room terminal chat server.

Rooms with allow-lists, direct messages and presence over WebSockets,
with an in-memory connection registry in front of a durable message log.

License: Apache-2.0 License
"""

__version__ = "1.0.0"
