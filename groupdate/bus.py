"""
Realtime notifier for event updates, backed by Redis pub/sub.
"""
import json
import logging
from typing import Final

import redis.asyncio as redis
from redis.exceptions import RedisError

from groupdate.dates import utcnow
from groupdate.events import EventMessage, EventPayload, Topic

CHANNEL_EVENT_PREFIX: Final[str] = "event:"

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, redis_client: redis.Redis | None):
        self.redis_client = redis_client

    @staticmethod
    def event_channel(event_id: str) -> str:
        return f"{CHANNEL_EVENT_PREFIX}{event_id}"

    async def notify(self, event_id: str, topic: Topic, payload: EventPayload) -> bool:
        """Publish best-effort. Delivery failures are logged, never raised."""
        if self.redis_client is None:
            return False
        message: EventMessage = {
            "type": topic,
            "event_id": event_id,
            "payload": payload,
            "sent_at": utcnow().isoformat(),
        }
        try:
            await self.redis_client.publish(self.event_channel(event_id), json.dumps(message))
            return True
        except (RedisError, OSError) as e:
            logger.warning("Failed to publish %s for event %s...: %r", topic, event_id[:8], e)
            return False
