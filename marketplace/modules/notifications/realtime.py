"""Real-time fan-out to per-user rooms over Redis pub/sub.

Handlers queue events on a ``RealtimeBatch`` while they run; the router hands
the batch to ``RealtimeBroadcaster.publish`` as a background task, so events
go out only after the request transaction has been committed. Delivery is
best effort: publishing failures are logged and dropped.
"""

import json
import logging
import uuid
from collections.abc import Iterator
from dataclasses import dataclass

import redis.asyncio as redis

from marketplace.config import settings

logger = logging.getLogger(__name__)


def user_room(user_id: uuid.UUID | str) -> str:
    return f"{settings.realtime_channel_prefix}:{user_id}"


@dataclass(frozen=True)
class RealtimeEvent:
    room: str
    event: str
    payload: dict


class RealtimeBatch:
    """Collects events produced during a request."""

    def __init__(self) -> None:
        self._events: list[RealtimeEvent] = []

    def to_user(self, user_id: uuid.UUID | str | None, event: str, payload: dict) -> None:
        if user_id is None:
            return
        self._events.append(RealtimeEvent(room=user_room(user_id), event=event, payload=payload))

    def to_users(self, user_ids, event: str, payload: dict) -> None:
        seen = set()
        for user_id in user_ids:
            if user_id is None or user_id in seen:
                continue
            seen.add(user_id)
            self.to_user(user_id, event, payload)

    def __iter__(self) -> Iterator[RealtimeEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)


class RealtimeBroadcaster:
    """Publishes queued events as ``{"event", "data"}`` JSON on each user's channel."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        self._redis = redis_client

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    async def publish(self, batch: RealtimeBatch) -> int:
        """Publish every event in the batch. Returns how many were sent."""
        if not batch:
            return 0
        sent = 0
        try:
            client = await self._get_redis()
            for event in batch:
                message = json.dumps({"event": event.event, "data": event.payload}, default=str)
                await client.publish(event.room, message)
                sent += 1
        except (redis.RedisError, OSError) as exc:
            logger.warning(
                "Real-time publish failed after %d of %d events: %s", sent, len(batch), exc
            )
        return sent

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


_broadcaster: RealtimeBroadcaster | None = None


def get_broadcaster() -> RealtimeBroadcaster:
    """FastAPI dependency returning the process-wide broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = RealtimeBroadcaster()
    return _broadcaster
