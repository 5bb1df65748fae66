import redis.asyncio as aioredis
from fastapi import Request

from app.config import Settings


def create_redis(settings: Settings) -> aioredis.Redis:
    return aioredis.from_url(
        f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}",
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )


async def get_redis(request: Request) -> aioredis.Redis:
    return request.app.state.redis
