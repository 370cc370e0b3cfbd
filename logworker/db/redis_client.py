"""Redis client factory for the queue and the update notifier."""

from redis.asyncio import Redis

from logworker.config import Settings


def create_redis_client(settings: Settings) -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)
