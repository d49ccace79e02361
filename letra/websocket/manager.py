"""WebSocket connection manager with room-based support and Redis pub/sub.

Every connection joins the room of its owner (``user:{subject}``) so that a
sidebar open in several tabs or devices refreshes when any of them changes
the tree. Broadcasts go through Redis when it is connected so that clients
attached to other workers receive them too.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from fastapi import WebSocket

from ..config import settings
from ..services.redis_service import redis_service

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket message types."""

    # Connection events
    CONNECTED = "connected"
    ERROR = "error"

    # Room events
    ROOM_JOINED = "room_joined"

    # Document tree events
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_ARCHIVED = "document_archived"
    DOCUMENT_RESTORED = "document_restored"
    DOCUMENT_DELETED = "document_deleted"

    # Ping/pong for keepalive
    PING = "ping"
    PONG = "pong"


def get_user_room(user_id: str) -> str:
    """Room that every connection of a user joins."""
    return f"user:{user_id}"


@dataclass
class WebSocketConnection:
    """Represents a WebSocket connection with user context."""

    websocket: WebSocket
    user_id: str
    connected_at: datetime = field(default_factory=datetime.utcnow)
    rooms: set[str] = field(default_factory=set)

    def __hash__(self) -> int:
        """Hash by websocket id for set operations."""
        return id(self.websocket)

    def __eq__(self, other: object) -> bool:
        """Equality check by websocket id."""
        if not isinstance(other, WebSocketConnection):
            return False
        return id(self.websocket) == id(other.websocket)


class ConnectionManager:
    """
    WebSocket connection manager with room-based support and Redis pub/sub.

    Features:
    - Per-user rooms for document tree events
    - Redis pub/sub for cross-worker message delivery
    - Per-user connection limit
    - Keepalive ping/pong support
    """

    _BROADCAST_CHANNEL = "ws:broadcast"

    def __init__(self) -> None:
        """Initialize the connection manager."""
        # Map of room_id -> set of connections
        self._rooms: dict[str, set[WebSocketConnection]] = {}
        # Map of websocket -> connection object
        self._connections: dict[WebSocket, WebSocketConnection] = {}
        # Map of user_id -> set of connections
        self._user_connections: dict[str, set[WebSocketConnection]] = {}
        self._lock = asyncio.Lock()
        self._redis_initialized = False

    async def initialize_redis(self) -> None:
        """Set up Redis pub/sub handlers for cross-worker messaging."""
        if self._redis_initialized:
            return

        await redis_service.subscribe(self._BROADCAST_CHANNEL, self._handle_redis_broadcast)
        self._redis_initialized = True
        logger.info("ConnectionManager Redis pub/sub initialized")

    async def _handle_redis_broadcast(self, data: dict) -> None:
        """Deliver a broadcast published by any worker to local connections."""
        room_id = data.get("room_id")
        message = data.get("message")

        if not room_id or not message:
            return

        await self._send_to_local_room(room_id, message)

    @property
    def total_connections(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    @property
    def total_rooms(self) -> int:
        """Get total number of active rooms."""
        return len(self._rooms)

    def get_room_count(self, room_id: str) -> int:
        """Get number of connections in a room."""
        return len(self._rooms.get(room_id, set()))

    def get_user_connections_count(self, user_id: str) -> int:
        """Get number of connections for a user."""
        return len(self._user_connections.get(user_id, set()))

    async def connect(
        self,
        websocket: WebSocket,
        user_id: str,
    ) -> Optional[WebSocketConnection]:
        """
        Accept a WebSocket connection and register it in the user's room.

        Returns:
            The connection wrapper object, or None if the user already has
            too many connections open
        """
        current_connections = self.get_user_connections_count(user_id)
        if current_connections >= settings.ws_max_connections_per_user:
            logger.warning(
                f"Connection limit reached for user {user_id}: "
                f"{current_connections}/{settings.ws_max_connections_per_user}"
            )
            await websocket.close(code=4029, reason="Too many connections")
            return None

        await websocket.accept()

        connection = WebSocketConnection(websocket=websocket, user_id=user_id)

        async with self._lock:
            self._connections[websocket] = connection
            self._user_connections.setdefault(user_id, set()).add(connection)

        await self.send_personal(
            connection,
            {
                "type": MessageType.CONNECTED,
                "data": {
                    "user_id": user_id,
                    "connected_at": connection.connected_at.isoformat(),
                },
            },
        )
        await self.join_room(connection, get_user_room(user_id))

        logger.info(
            f"WebSocket connected: user={user_id}, "
            f"total_connections={self.total_connections}"
        )
        return connection

    async def disconnect(self, websocket: WebSocket) -> None:
        """Disconnect a WebSocket and clean up all associated resources."""
        async with self._lock:
            connection = self._connections.pop(websocket, None)

            if connection is None:
                return

            user_connections = self._user_connections.get(connection.user_id)
            if user_connections is not None:
                user_connections.discard(connection)
                if not user_connections:
                    del self._user_connections[connection.user_id]

            for room_id in list(connection.rooms):
                if room_id in self._rooms:
                    self._rooms[room_id].discard(connection)
                    if not self._rooms[room_id]:
                        del self._rooms[room_id]

        logger.info(
            f"WebSocket disconnected: user={connection.user_id}, "
            f"total_connections={self.total_connections}"
        )

    async def join_room(self, connection: WebSocketConnection, room_id: str) -> None:
        """Add a connection to a room and confirm it to the client."""
        async with self._lock:
            self._rooms.setdefault(room_id, set()).add(connection)
            connection.rooms.add(room_id)

        await self.send_personal(
            connection,
            {
                "type": MessageType.ROOM_JOINED,
                "data": {
                    "room_id": room_id,
                    "connection_count": self.get_room_count(room_id),
                },
            },
        )

    async def send_personal(
        self,
        connection: WebSocketConnection,
        message: dict[str, Any],
    ) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception:
            return False

    async def _send_to_local_room(self, room_id: str, message: dict[str, Any]) -> int:
        connections = self._rooms.get(room_id, set()).copy()
        if not connections:
            return 0

        results = await asyncio.gather(
            *(self.send_personal(conn, message) for conn in connections),
            return_exceptions=True,
        )
        success_count = sum(1 for r in results if r is True)
        logger.debug(
            f"Broadcast to room {room_id}: {success_count}/{len(connections)} successful"
        )
        return success_count

    async def broadcast_to_room(self, room_id: str, message: dict[str, Any]) -> int:
        """
        Broadcast a message to all connections in a room (across all workers).

        Returns:
            Number of local connections in the room when published through
            Redis, otherwise the number of successful local sends
        """
        if redis_service.is_connected:
            try:
                await redis_service.publish(
                    self._BROADCAST_CHANNEL,
                    {"room_id": room_id, "message": message},
                )
                # Redis delivers to this worker too via _handle_redis_broadcast
                return self.get_room_count(room_id)
            except Exception as e:
                logger.warning(f"Redis publish failed, delivering locally: {e}")

        return await self._send_to_local_room(room_id, message)

    async def broadcast_to_user(self, user_id: str, message: dict[str, Any]) -> int:
        """Broadcast a message to every connection of a user."""
        return await self.broadcast_to_room(get_user_room(user_id), message)

    async def handle_message(
        self,
        connection: WebSocketConnection,
        data: dict[str, Any],
    ) -> None:
        """Handle an incoming client message."""
        message_type = data.get("type")

        if message_type == MessageType.PING:
            await self.send_personal(connection, {"type": MessageType.PONG, "data": {}})
        else:
            logger.debug(
                f"Unhandled message type: {message_type} from user {connection.user_id}"
            )
            await self.send_personal(
                connection,
                {
                    "type": MessageType.ERROR,
                    "data": {
                        "error": "UNKNOWN_MESSAGE_TYPE",
                        "message": f"Unsupported message type: {message_type}",
                    },
                },
            )


# Global singleton instance
manager = ConnectionManager()
