"""Notification sinks and the notification subscriber."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from gamify.events.subscribers import NotificationSubscriber
from gamify.events.types import AchievementEarnedEvent, PointsEarnedEvent, UserRef
from gamify.notifications.sink import (
    InMemoryNotificationSink,
    RedisNotificationSink,
    defer_notification,
    discard_deferred,
    send_deferred,
)

pytestmark = pytest.mark.asyncio

ALICE = UserRef(id="u-1", username="alice")


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    async def publish(self, channel, data):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, data))


class TestRedisNotificationSink:
    async def test_publishes_json_with_prefix(self):
        client = FakeRedis()
        sink = RedisNotificationSink(client, prefix="pubsub:")

        await sink.send("points", {"userId": "u-1", "points": 5})

        [(channel, data)] = client.published
        assert channel == "pubsub:points"
        assert json.loads(data) == {"userId": "u-1", "points": 5}
        assert sink.published == 1

    async def test_publish_failure_is_swallowed(self):
        sink = RedisNotificationSink(FakeRedis(fail=True))

        await sink.send("points", {"userId": "u-1"})

        assert sink.failed == 1
        assert sink.published == 0


class TestDeferredNotifications:
    async def test_held_until_sent(self):
        db = SimpleNamespace(info={})
        sink = InMemoryNotificationSink()
        defer_notification(db, "redemptions", {"eventType": "REDEMPTION_CREATED"})
        defer_notification(db, "redemptions", {"eventType": "REDEMPTION_STATUS_CHANGED"})

        assert sink.messages == []
        assert await send_deferred(db, sink) == 2
        assert [m["eventType"] for m in sink.on("redemptions")] == [
            "REDEMPTION_CREATED",
            "REDEMPTION_STATUS_CHANGED",
        ]
        assert await send_deferred(db, sink) == 0

    async def test_discarded_messages_never_sent(self):
        db = SimpleNamespace(info={})
        sink = InMemoryNotificationSink()
        defer_notification(db, "redemptions", {"eventType": "REDEMPTION_CREATED"})

        assert discard_deferred(db) == 1
        assert await send_deferred(db, sink) == 0
        assert sink.messages == []


class TestNotificationSubscriber:
    async def test_points_earned_message(self):
        sink = InMemoryNotificationSink()
        subscriber = NotificationSubscriber(sink)

        await subscriber.handle(PointsEarnedEvent(user=ALICE, points=30, new_total=130, source="TASK_COMPLETED"))

        assert sink.messages == [("points", {
            "userId": "u-1",
            "eventType": "POINTS_EARNED",
            "points": 30,
            "newBalance": 130,
            "source": "TASK_COMPLETED",
        })]

    async def test_achievement_message(self):
        sink = InMemoryNotificationSink()
        subscriber = NotificationSubscriber(sink)

        await subscriber.handle(AchievementEarnedEvent(
            user=ALICE, achievement_id="a-1", achievement_name="First Steps",
        ))

        [(channel, message)] = sink.messages
        assert channel == "achievements"
        assert message["achievementName"] == "First Steps"
        assert message["eventType"] == "ACHIEVEMENT_EARNED"
