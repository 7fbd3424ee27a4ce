"""Redis client creation and health probing."""

from redis import asyncio as aioredis


def create_redis_client(redis_url: str) -> aioredis.Redis:
    """Create an asyncio Redis client returning decoded strings."""
    return aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True
    )


async def ping_redis(client: aioredis.Redis) -> str:
    """Health check: ping the key-value store."""
    await client.ping()
    return "Redis is reachable"
