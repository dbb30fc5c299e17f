"""Live delivery tests: connection registry, SSE channel and pub/sub fan-out"""

import asyncio
import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mathbridge.domain.notifications.dispatcher import (
    BroadcastNotificationDispatcher,
    ChannelClosedError,
    NotificationDispatcher,
    SSEChannel,
    format_sse_frame,
)
from mathbridge.domain.notifications.pubsub import (
    NotificationSubscriber,
    build_envelope,
    parse_envelope,
)
from mathbridge.domain.notifications.schemas import NotificationResponse


def notification(user_id=7, notification_id=1):
    return NotificationResponse(
        id=notification_id,
        userId=user_id,
        title="Payment received",
        message="We received 100.000 ₫",
        notificationType="Payment",
        status="Pending",
        createdAt=datetime(2024, 1, 5, 10, 15),
    )


class RecordingChannel:
    def __init__(self, fail=False):
        self.frames = []
        self.closed = False
        self.fail = fail

    async def write(self, frame):
        if self.fail:
            raise ChannelClosedError("broken pipe")
        self.frames.append(frame)

    async def flush(self):
        return None

    async def close(self):
        self.closed = True


class FakePubSub:
    """Yields the given messages, then raises ``error`` or blocks until cancelled"""

    def __init__(self, messages=(), error=None):
        self.messages = list(messages)
        self.error = error

    async def subscribe(self, topic):
        pass

    async def unsubscribe(self, topic):
        pass

    async def aclose(self):
        pass

    async def listen(self):
        for message in self.messages:
            yield message
        if self.error:
            raise self.error
        await asyncio.Event().wait()


class TestNotificationDispatcher:
    async def test_delivers_to_connected_user(self):
        dispatcher = NotificationDispatcher()
        channel = RecordingChannel()
        await dispatcher.register_connection(7, channel)

        assert await dispatcher.dispatch(notification(7))
        assert len(channel.frames) == 1
        assert channel.frames[0].startswith("data: ")
        assert channel.frames[0].endswith("\n\n")

    async def test_offline_user_returns_false(self):
        dispatcher = NotificationDispatcher()
        assert not await dispatcher.send_local(99, notification(99))

    async def test_reconnect_replaces_and_closes_old_channel(self):
        dispatcher = NotificationDispatcher()
        first, second = RecordingChannel(), RecordingChannel()

        await dispatcher.register_connection(7, first)
        await dispatcher.register_connection(7, second)
        await dispatcher.dispatch(notification(7))

        assert first.closed
        assert first.frames == []
        assert len(second.frames) == 1
        assert dispatcher.active_connection_count() == 1

    async def test_stale_stream_cannot_evict_replacement(self):
        dispatcher = NotificationDispatcher()
        first, second = RecordingChannel(), RecordingChannel()
        await dispatcher.register_connection(7, first)
        await dispatcher.register_connection(7, second)

        removed = await dispatcher.unregister_connection(7, first)

        assert not removed
        assert dispatcher.is_connected(7)

    async def test_failed_write_drops_connection(self):
        dispatcher = NotificationDispatcher()
        await dispatcher.register_connection(7, RecordingChannel(fail=True))

        assert not await dispatcher.send_local(7, notification(7))
        assert not dispatcher.is_connected(7)

    async def test_unregister_unknown_user(self):
        assert not await NotificationDispatcher().unregister_connection(123)

    async def test_broadcast_counts_deliveries(self):
        dispatcher = NotificationDispatcher()
        await dispatcher.register_connection(1, RecordingChannel())
        await dispatcher.register_connection(2, RecordingChannel())

        delivered = await dispatcher.broadcast({"title": "Maintenance tonight"}, [1, 2, 3])

        assert delivered == 2

    async def test_close_all(self):
        dispatcher = NotificationDispatcher()
        channels = [RecordingChannel() for _ in range(3)]
        for user_id, channel in enumerate(channels, start=1):
            await dispatcher.register_connection(user_id, channel)

        await dispatcher.close_all()

        assert dispatcher.active_connection_count() == 0
        assert all(c.closed for c in channels)

    async def test_close_errors_are_ignored(self):
        dispatcher = NotificationDispatcher()
        channel = RecordingChannel()
        channel.close = AsyncMock(side_effect=RuntimeError("already gone"))
        await dispatcher.register_connection(7, channel)

        assert await dispatcher.unregister_connection(7)


class TestSSEChannel:
    async def test_yields_frames_then_stops_on_close(self):
        channel = SSEChannel()
        await channel.write(format_sse_frame(notification()))
        await channel.close()

        frames = [frame async for frame in channel.events(keepalive=1)]

        assert len(frames) == 1
        payload = json.loads(frames[0][len("data: "):])
        assert payload["notificationType"] == "Payment"

    async def test_keepalive_when_idle(self):
        channel = SSEChannel()
        stream = channel.events(keepalive=0.01)

        frame = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert frame == ": keep-alive\n\n"
        await stream.aclose()

    async def test_write_after_close_fails(self):
        channel = SSEChannel()
        await channel.close()
        with pytest.raises(ChannelClosedError):
            await channel.write("data: {}\n\n")

    async def test_full_queue_fails(self):
        channel = SSEChannel(max_pending=1)
        await channel.write("data: 1\n\n")
        with pytest.raises(ChannelClosedError):
            await channel.write("data: 2\n\n")


class TestPubSub:
    def test_envelope_round_trip(self):
        envelope = build_envelope(notification(7))

        assert envelope["attributes"]["userId"] == "7"
        assert envelope["attributes"]["notificationType"] == "Payment"
        assert parse_envelope(json.dumps(envelope)).userId == 7

    def test_mismatched_routing_rejected(self):
        envelope = build_envelope(notification(7))
        envelope["attributes"]["userId"] = "8"
        with pytest.raises(ValueError):
            parse_envelope(json.dumps(envelope).encode("utf-8"))

    async def test_subscriber_delivers_locally(self):
        dispatcher = NotificationDispatcher()
        channel = RecordingChannel()
        await dispatcher.register_connection(7, channel)
        subscriber = NotificationSubscriber(MagicMock(), dispatcher, "notifications")

        delivered = await subscriber.handle_message(json.dumps(build_envelope(notification(7))))

        assert delivered
        assert len(channel.frames) == 1

    async def test_subscriber_skips_malformed(self):
        subscriber = NotificationSubscriber(MagicMock(), NotificationDispatcher(), "notifications")
        assert not await subscriber.handle_message("not json")
        assert not await subscriber.handle_message(json.dumps({"attributes": {}}))

    async def test_subscriber_resubscribes_after_connection_loss(self):
        dispatcher = NotificationDispatcher()
        channel = RecordingChannel()
        await dispatcher.register_connection(7, channel)
        message = {"type": "message", "data": json.dumps(build_envelope(notification(7)))}
        redis_client = MagicMock()
        redis_client.pubsub.side_effect = [
            FakePubSub(error=RedisConnectionError("Connection reset by peer")),
            FakePubSub(messages=[{"type": "subscribe", "data": 1}, message]),
        ]
        subscriber = NotificationSubscriber(redis_client, dispatcher, "notifications", retry_delay=0)

        task = asyncio.create_task(subscriber.listen())
        for _ in range(100):
            if channel.frames:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(channel.frames) == 1
        assert redis_client.pubsub.call_count == 2

    async def test_subscriber_backoff_is_capped(self):
        redis_client = MagicMock()
        redis_client.pubsub.side_effect = lambda: FakePubSub(error=RedisConnectionError("down"))
        subscriber = NotificationSubscriber(
            redis_client, NotificationDispatcher(), "notifications", retry_delay=1, max_retry_delay=4
        )
        sleep = AsyncMock(side_effect=[None, None, None, None, asyncio.CancelledError()])

        with patch("mathbridge.domain.notifications.pubsub.asyncio.sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await subscriber.listen()

        assert [c.args[0] for c in sleep.await_args_list] == [1, 2, 4, 4, 4]

    async def test_broadcast_dispatcher_publishes(self):
        redis_client = AsyncMock()
        dispatcher = BroadcastNotificationDispatcher(redis_client, "notifications")

        assert await dispatcher.dispatch(notification(7))

        channel_name, message = redis_client.publish.await_args.args
        assert channel_name == "notifications"
        assert json.loads(message)["data"]["userId"] == 7

    async def test_publish_failure_falls_back_to_local(self):
        redis_client = AsyncMock()
        redis_client.publish.side_effect = ConnectionError("redis down")
        dispatcher = BroadcastNotificationDispatcher(redis_client, "notifications")
        channel = RecordingChannel()
        await dispatcher.register_connection(7, channel)

        assert await dispatcher.dispatch(notification(7))
        assert len(channel.frames) == 1

    async def test_broadcast_publishes_one_copy_per_recipient(self):
        redis_client = AsyncMock()
        dispatcher = BroadcastNotificationDispatcher(redis_client, "notifications")

        assert await dispatcher.broadcast(notification(7), [1, 2]) == 2

        recipients = [parse_envelope(call.args[1]).userId for call in redis_client.publish.await_args_list]
        assert recipients == [1, 2]
