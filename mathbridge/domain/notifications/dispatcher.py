"""
Live notification delivery

The dispatcher owns the registry of open per-user output channels (one per
user; a reconnect replaces the old channel). It is created once in the app
lifespan, stored on app.state and drained at shutdown.

Two variants, chosen at construction:
- NotificationDispatcher: delivers only to channels held by this process
- BroadcastNotificationDispatcher: publishes to the pub/sub channel and lets
  every instance's subscriber (this one included) deliver locally
"""

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator
from typing import Any, Optional, Union

from fastapi import Request

from ...config import NOTIFICATION_TOPIC, SSE_KEEPALIVE_SECONDS
from .pubsub import build_envelope
from .schemas import NotificationResponse

logger = logging.getLogger(__name__)

_CLOSE = object()


class ChannelClosedError(Exception):
    """Write attempted on a closed or saturated channel"""


class SSEChannel:
    """
    Output channel for one server-sent-events response.

    Writers put complete frames on a bounded queue; the streaming response
    drains it via events(). A client that stops reading fills the queue and
    the next write fails, which makes the dispatcher drop the channel.
    """

    def __init__(self, max_pending: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    async def write(self, frame: str) -> None:
        if self.closed:
            raise ChannelClosedError("channel is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise ChannelClosedError("client is not reading") from e

    async def flush(self) -> None:
        # Frames are handed to the response as soon as they are queued
        return None

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # events() notices the closed flag at the next keep-alive tick
            pass

    async def events(self, keepalive: float = SSE_KEEPALIVE_SECONDS) -> AsyncIterator[str]:
        """Yield queued frames, with a comment line whenever the stream is idle"""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if self.closed:
                    return
                yield ": keep-alive\n\n"
                continue

            if item is _CLOSE:
                return
            yield item


def format_sse_frame(notification: Union[NotificationResponse, dict[str, Any]]) -> str:
    if isinstance(notification, NotificationResponse):
        payload = notification.model_dump_json()
    else:
        payload = json.dumps(notification, default=str)
    return f"data: {payload}\n\n"


class NotificationDispatcher:
    """Local-only delivery to the channels registered in this process"""

    broadcasts = False

    def __init__(self):
        self._connections: dict[int, Any] = {}
        self._lock = threading.Lock()

    async def register_connection(self, user_id: int, channel) -> None:
        """Insert or replace the user's channel; a displaced channel is flushed and closed"""
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = channel

        if previous is not None and previous is not channel:
            logger.info(f"🔁 Replacing live connection for user {user_id}")
            await self._close_quietly(user_id, previous)
        else:
            logger.info(f"🔌 User {user_id} connected for live notifications")

    async def unregister_connection(self, user_id: int, channel=None) -> bool:
        """
        Remove and close the user's channel. With channel given, the entry is
        only removed while it is still that channel, so a replaced stream
        cannot evict its replacement. Close errors are logged and ignored.
        """
        with self._lock:
            current = self._connections.get(user_id)
            removed = current is not None and (channel is None or current is channel)
            if removed:
                del self._connections[user_id]

        if removed:
            logger.info(f"🔌 User {user_id} disconnected from live notifications")
            await self._close_quietly(user_id, current)
        elif channel is not None:
            await self._close_quietly(user_id, channel)
        return removed

    async def send_local(
        self, user_id: int, notification: Union[NotificationResponse, dict[str, Any]]
    ) -> bool:
        """Write to the user's channel if connected here. Returns True when written."""
        with self._lock:
            channel = self._connections.get(user_id)
        if channel is None:
            return False

        try:
            await channel.write(format_sse_frame(notification))
            await channel.flush()
            return True
        except Exception as e:
            logger.warning(f"⚠️ Live delivery to user {user_id} failed, dropping connection: {e}")
            await self.unregister_connection(user_id, channel)
            return False

    async def dispatch(self, notification: NotificationResponse) -> bool:
        """Deliver a persisted notification to its recipient"""
        return await self.send_local(notification.userId, notification)

    async def broadcast(
        self, notification: Union[NotificationResponse, dict[str, Any]], user_ids: list[int]
    ) -> int:
        """Send the same payload to users connected to this instance; returns deliveries"""
        delivered = 0
        for user_id in user_ids:
            if await self.send_local(user_id, notification):
                delivered += 1
        return delivered

    def active_connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def connected_users(self) -> list[int]:
        with self._lock:
            return list(self._connections)

    def is_connected(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._connections

    async def close_all(self) -> None:
        """Shutdown drain: close every channel"""
        with self._lock:
            connections = list(self._connections.items())
            self._connections.clear()

        for user_id, channel in connections:
            await self._close_quietly(user_id, channel)
        if connections:
            logger.info(f"🧹 Closed {len(connections)} live notification connections")

    async def _close_quietly(self, user_id: int, channel) -> None:
        try:
            await channel.flush()
            await channel.close()
        except Exception as e:
            logger.debug(f"Ignoring close error for user {user_id}: {e}")


class BroadcastNotificationDispatcher(NotificationDispatcher):
    """Publishes to the pub/sub channel; each instance's subscriber delivers locally"""

    broadcasts = True

    def __init__(self, redis_client, topic: str = NOTIFICATION_TOPIC):
        super().__init__()
        self.redis = redis_client
        self.topic = topic

    async def publish_cross_instance(
        self, notification: NotificationResponse, topic: Optional[str] = None
    ) -> None:
        envelope = build_envelope(notification)
        await self.redis.publish(topic or self.topic, json.dumps(envelope))

    async def dispatch(self, notification: NotificationResponse) -> bool:
        try:
            await self.publish_cross_instance(notification)
            return True
        except Exception as e:
            logger.warning(
                f"⚠️ Publishing notification {notification.id} failed, delivering locally only: {e}"
            )
            return await self.send_local(notification.userId, notification)

    async def broadcast(
        self, notification: Union[NotificationResponse, dict[str, Any]], user_ids: list[int]
    ) -> int:
        """
        Publish one copy per recipient so whichever instance holds their stream
        delivers it. Raw dict payloads carry no recipient and stay local.
        """
        if not isinstance(notification, NotificationResponse):
            return await super().broadcast(notification, user_ids)

        delivered = 0
        for user_id in user_ids:
            if await self.dispatch(notification.model_copy(update={"userId": user_id})):
                delivered += 1
        return delivered


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """Dependency returning the process-wide dispatcher built in the lifespan"""
    return request.app.state.notification_dispatcher
