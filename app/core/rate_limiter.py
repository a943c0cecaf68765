import time
import uuid

import redis.asyncio as aioredis
from fastapi import HTTPException, status


def create_redis_client(host: str, port: int) -> aioredis.Redis:
    return aioredis.Redis(
        host=host,
        port=port,
        db=0,
        decode_responses=True
    )


async def sliding_window_rate_limit(
    redis_client: aioredis.Redis,
    tenant_id: str,
    action: str,
    max_requests: int,
    window_seconds: int,
):
    """
    Sliding window rate limiting algorithm using Redis sorted sets (ZSET).
    Tracks timestamps of each request in a window.
    """

    key = f"rate_limit:{tenant_id}:{action}"
    current_time = time.time()
    window_start = current_time - window_seconds

    pipe = redis_client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)  # Remove outdated requests
    pipe.zadd(key, {f"{current_time}:{uuid.uuid4().hex}": current_time})
    pipe.zcard(key)  # Count requests in window
    pipe.expire(key, window_seconds + 10)
    _, _, current_count, _ = await pipe.execute()

    if current_count > max_requests:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded for {action}. Try again later."
        )


class RateLimiter:
    """Per-tenant sliding window limit for one action."""

    def __init__(self, redis_client: aioredis.Redis, action: str, max_requests: int, window_seconds: int = 60):
        self.redis_client = redis_client
        self.action = action
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def check(self, tenant_id: str) -> None:
        await sliding_window_rate_limit(
            self.redis_client, tenant_id, self.action, self.max_requests, self.window_seconds
        )
