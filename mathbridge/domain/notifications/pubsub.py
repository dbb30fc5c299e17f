"""
Cross-instance notification fan-out over Redis pub/sub

Every API instance publishes to the same channel and runs one subscriber;
each subscriber attempts local delivery, so whichever instance holds the
recipient's live stream delivers it.

Envelope:
    {"data": <NotificationResponse>, "attributes": {"userId", "notificationType", "timestamp"}}
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Union

import redis.asyncio as aioredis

from ...config import NOTIFICATION_TOPIC
from .schemas import NotificationResponse

logger = logging.getLogger(__name__)


def create_redis_client(url: str) -> aioredis.Redis:
    """Async Redis client for publishing and subscribing"""
    return aioredis.from_url(url, decode_responses=True)


def build_envelope(notification: NotificationResponse) -> dict[str, Any]:
    return {
        "data": notification.model_dump(mode="json"),
        "attributes": {
            "userId": str(notification.userId),
            "notificationType": notification.notificationType,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


def parse_envelope(raw: Union[str, bytes]) -> NotificationResponse:
    """Decode a published message; raises ValueError/KeyError on malformed input"""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    envelope = json.loads(raw)
    notification = NotificationResponse.model_validate(envelope["data"])

    attributes = envelope.get("attributes") or {}
    routed_user = attributes.get("userId")
    if routed_user is not None and str(routed_user) != str(notification.userId):
        raise ValueError(
            f"Envelope userId {routed_user} does not match payload userId {notification.userId}"
        )
    return notification


class NotificationSubscriber:
    """Consumes the notifications channel and hands each message to the local dispatcher"""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        dispatcher,
        topic: str = NOTIFICATION_TOPIC,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self.redis = redis_client
        self.dispatcher = dispatcher
        self.topic = topic
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.failures = 0

    async def handle_message(self, raw: Union[str, bytes]) -> bool:
        """Deliver one message locally. Returns True if a local stream received it."""
        try:
            notification = parse_envelope(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"⚠️ Skipping malformed notification message: {e}")
            return False

        return await self.dispatcher.send_local(notification.userId, notification)

    async def listen(self) -> None:
        """
        Subscribe and process messages until cancelled. A dropped connection
        is logged and resubscribed with exponential backoff.
        """
        while True:
            try:
                await self._consume()
                logger.warning(f"⚠️ Notification channel '{self.topic}' closed; resubscribing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Notification subscriber lost channel '{self.topic}': {e}")

            delay = min(self.retry_delay * (2**self.failures), self.max_retry_delay)
            self.failures += 1
            await asyncio.sleep(delay)

    async def _consume(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.topic)
            logger.info(f"📡 Subscribed to notification channel '{self.topic}'")
            self.failures = 0
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.handle_message(message["data"])
        finally:
            logger.info(f"📡 Unsubscribing from notification channel '{self.topic}'")
            try:
                await pubsub.unsubscribe(self.topic)
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"Pub/sub cleanup failed (non-critical): {e}")
