"""WebSocket module for real-time document tree updates."""

from .manager import (
    ConnectionManager,
    MessageType,
    WebSocketConnection,
    get_user_room,
    manager,
)

__all__ = [
    "ConnectionManager",
    "MessageType",
    "WebSocketConnection",
    "get_user_room",
    "manager",
]
