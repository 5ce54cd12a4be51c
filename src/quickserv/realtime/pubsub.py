"""Redis pub/sub — notification frames between worker processes.

Learn: The connection registry is per process. With several uvicorn
workers, user 42's laptop tab may sit on worker A while the booking that
notifies them is accepted on worker B. So when Redis is configured the
dispatcher PUBLISHes the frames on quickserv:user:{id}, and every worker
runs a RedisFanout that PSUBSCRIBEs to quickserv:user:* and hands the
frames to its own registry.

Redis pub/sub is fire-and-forget: a lost message only costs latency,
because the notification is already in the database and the client
reconciles on reconnect and on its polling backstop.
"""

import asyncio
import json
from contextlib import suppress
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from quickserv.config import settings

logger = structlog.get_logger()

CHANNEL_PREFIX = "quickserv:user:"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def user_channel(user_id: int) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


class RedisFramePublisher:
    """Dispatcher-side half: publish frames for a user to every worker."""

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def publish(self, user_id: int, frames: list[dict[str, Any]]) -> None:
        payload = json.dumps({"user_id": user_id, "frames": frames})
        await self.redis.publish(user_channel(user_id), payload)


class RedisFanout:
    """Worker-side half: deliver published frames to local connections."""

    def __init__(self, redis: aioredis.Redis, dispatcher, retry_delay: float = 1.0):
        self.redis = redis
        self.dispatcher = dispatcher
        self.retry_delay = retry_delay

    async def run(self) -> None:
        """Listen until cancelled, resubscribing after any Redis failure."""
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(
                    "fanout.listen_failed", error=str(e), retry_in=self.retry_delay
                )
                await asyncio.sleep(self.retry_delay)

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            logger.info("fanout.subscribed", pattern=f"{CHANNEL_PREFIX}*")
            async for message in pubsub.listen():
                if message["type"] == "pmessage":
                    await self.handle(message["data"])
        finally:
            # the connection may be the thing that failed
            with suppress(Exception):
                await pubsub.punsubscribe()
            with suppress(Exception):
                await pubsub.aclose()

    async def handle(self, raw: str) -> int:
        """Deliver one published envelope. Returns local connections reached."""
        try:
            envelope = json.loads(raw)
            user_id = int(envelope["user_id"])
            frames = list(envelope["frames"])
        except (TypeError, ValueError, KeyError) as e:
            logger.warning("fanout.bad_message", error=str(e))
            return 0
        return await self.dispatcher.deliver_local(user_id, frames)
