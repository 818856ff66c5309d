import json
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError


class Notifier:
    """Broadcasts settled objects on Redis channels.

    Delivery is best effort: a broken Redis connection is logged and never
    fails the game operation that already committed.
    """

    def __init__(self, redis: Redis | None):
        self.redis = redis

    async def publish(self, channel: str, event: str, data: dict):
        """Publish one event

        Args:
            channel (str): Redis channel, e.g. "battles" or "wheel"
            event (str): Event name, e.g. "battle:ended"
            data (dict): JSON-serialisable payload
        """
        message = json.dumps({"event": event, "data": data}, default=str)
        if self.redis is None:
            logging.debug(f"No redis configured, dropping {event} on {channel}")
            return
        try:
            await self.redis.publish(channel, message)
        except (RedisError, OSError) as e:
            logging.warning(f"Failed to publish {event} on {channel}: {e}")
