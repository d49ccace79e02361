"""Redis pub/sub relay for document events.

When several Uvicorn workers serve Letra, the worker that archives a subtree
is rarely the one holding the owner's other tabs. Each worker publishes
document events on a Redis channel and relays whatever it receives to its
own WebSocket connections. Redis is optional: without it a worker only
reaches its local connections.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from ..config import settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


class RedisService:
    """Owns the Redis client, the pub/sub subscription and its listener task."""

    def __init__(self) -> None:
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub: Optional[PubSub] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._handlers: dict[str, list[MessageHandler]] = {}

    async def connect(self) -> None:
        """
        Open the client and verify the server answers.

        Raises:
            redis.exceptions.RedisError: if the server is unreachable; the
            service stays disconnected
        """
        client = aioredis.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout,
            retry_on_timeout=settings.redis_retry_on_timeout,
            decode_responses=True,
        )
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        self._redis = client
        logger.info(f"Redis connected at {settings.redis_url}")

    async def disconnect(self) -> None:
        """Stop the listener and close the subscription and client."""
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis disconnected")

    @property
    def client(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """Register a handler for decoded messages published on channel."""
        is_new = channel not in self._handlers
        self._handlers.setdefault(channel, []).append(handler)
        if is_new and self._pubsub is not None:
            await self._pubsub.subscribe(channel)

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Publish a message as JSON.

        UUIDs and datetimes in document events are sent as strings.

        Returns:
            Number of workers subscribed to the channel
        """
        return await self.client.publish(channel, json.dumps(message, default=str))

    async def start_listening(self) -> None:
        """Subscribe to every registered channel and start relaying messages."""
        if self._listener_task is not None:
            return

        self._pubsub = self.client.pubsub()
        if self._handlers:
            await self._pubsub.subscribe(*self._handlers)
        self._listener_task = asyncio.create_task(self._listen_loop())

    async def _dispatch(self, channel: str, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON message on {channel}")
            return

        for handler in self._handlers.get(channel, []):
            try:
                await handler(data)
            except Exception as e:
                logger.error(f"Handler error on {channel}: {e}")

    async def _listen_loop(self) -> None:
        while self._pubsub is not None:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Pub/sub listener error: {e}")
                await asyncio.sleep(1)
                continue

            if message and message["type"] == "message":
                await self._dispatch(message["channel"], message["data"])

    async def health_check(self) -> dict[str, Any]:
        """Report whether Redis is connected and answering."""
        if not self.is_connected:
            return {"status": "disconnected"}
        try:
            await self.client.ping()
        except Exception as e:
            return {"status": "error", "error": str(e)}
        return {"status": "healthy"}


# Global singleton instance
redis_service = RedisService()
