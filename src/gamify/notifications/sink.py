"""Notification sinks for structured messages emitted by subscribers and observers.

Channels in use: ``points``, ``achievements`` and ``redemptions``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, channel: str, message: dict[str, Any]) -> None: ...


_DEFERRED_KEY = "gamify.deferred_notifications"


def defer_notification(db: AsyncSession, channel: str, message: dict[str, Any]) -> None:
    """Hold a message on the session until its transaction commits."""
    db.info.setdefault(_DEFERRED_KEY, []).append((channel, dict(message)))


def discard_deferred(db: AsyncSession) -> int:
    return len(db.info.pop(_DEFERRED_KEY, []))


async def send_deferred(db: AsyncSession, sink: NotificationSink) -> int:
    """Send every message held on ``db``. Call only after a successful commit."""
    pending = db.info.pop(_DEFERRED_KEY, [])
    for channel, message in pending:
        await sink.send(channel, message)
    return len(pending)


class RedisNotificationSink:
    """Publishes each message as JSON to Redis pub/sub channel ``<prefix><channel>``.

    Delivery is best-effort: a failed publish is logged and dropped so that a
    Redis outage never rolls back a points or redemption update.
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "pubsub:") -> None:
        self._client = client
        self._prefix = prefix
        self.published = 0
        self.failed = 0

    @classmethod
    def from_url(cls, url: str, prefix: str = "pubsub:") -> RedisNotificationSink:
        return cls(aioredis.from_url(url, decode_responses=True), prefix)

    async def send(self, channel: str, message: dict[str, Any]) -> None:
        key = f"{self._prefix}{channel}"
        try:
            await self._client.publish(key, json.dumps(message, default=str))
            self.published += 1
        except Exception:
            self.failed += 1
            logger.warning("Failed to publish notification to %s", key, exc_info=True)

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.info(
            "Notification sink closed. Published: %d, Failed: %d",
            self.published, self.failed,
        )


class InMemoryNotificationSink:
    """Keeps ``(channel, message)`` pairs in memory. Used by tests and local runs."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []

    async def send(self, channel: str, message: dict[str, Any]) -> None:
        self.messages.append((channel, dict(message)))

    def on(self, channel: str) -> list[dict[str, Any]]:
        return [message for ch, message in self.messages if ch == channel]
