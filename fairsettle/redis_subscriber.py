import json
import logging
from typing import AsyncGenerator, Awaitable, Callable, List, Optional, Sequence

from redis.asyncio import Redis

HEART_BEAT = 15


class RedisSubscriber:
    """Redis subscriber class to handle SSE events."""

    def __init__(
        self,
        channels: Sequence[str],
        snapshot: Optional[Callable[[], Awaitable[List[dict]]]] = None,
    ):
        """Initialize RedisSubscriber with the channels to relay and an optional snapshot source."""
        self.channels: List[str] = list(channels)
        self.snapshot = snapshot

    @staticmethod
    def format_event(event: str, data) -> str:
        payload = json.dumps(data, default=str)
        return f"event: {event}\ndata: {payload}\n\n"

    async def event_generator(self, redis: Redis) -> AsyncGenerator[str, None]:
        """Event generator to handle SSE events.

        Args:
            redis (Redis): Redis connection object.
        """
        if self.snapshot is not None:
            for message in await self.snapshot():
                yield self.format_event(message["event"], message["data"])

        pubsub = redis.pubsub()
        await pubsub.subscribe(*self.channels)
        try:
            while True:
                msg = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=HEART_BEAT
                )
                if msg is None:
                    yield ": heartbeat\n\n"
                    continue
                if msg["type"] != "message":
                    continue
                data = msg["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                message = json.loads(data)
                logging.debug(f"Relaying {message['event']} from {msg['channel']}")
                yield self.format_event(message["event"], message["data"])
        finally:
            logging.info(f"Unsubscribing from {self.channels}")
            await pubsub.unsubscribe(*self.channels)
            await pubsub.close()
