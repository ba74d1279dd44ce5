import logging

from fastapi import HTTPException, status
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.settings import settings

logger = logging.getLogger(__name__)


def _ttl(seconds: int) -> int:
    return max(1, seconds)


async def rate_limit(redis: Redis, key: str, limit: int, window_seconds: int) -> None:
    try:
        pipe = redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        count, _ = await pipe.execute()
    except RedisError:
        logger.warning("Rate limit check skipped; redis unavailable", extra={"key": key})
        return
    if count > limit:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")


async def check_lockout(redis: Redis, identifier: str) -> None:
    try:
        locked_until = await redis.get(f"lock:{identifier}")
    except RedisError:
        logger.warning("Lockout check skipped; redis unavailable")
        return
    if locked_until:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts; try later",
        )


async def register_login_attempt(redis: Redis, identifier: str, success: bool) -> None:
    fail_key = f"fail:{identifier}"
    lock_key = f"lock:{identifier}"
    lockout_seconds = _ttl(settings.login_lockout_minutes * 60)
    try:
        if success:
            await redis.delete(fail_key, lock_key)
            return
        attempts = await redis.incr(fail_key)
        await redis.expire(fail_key, lockout_seconds)
        locked = attempts >= settings.login_attempt_limit
        if locked:
            await redis.setex(lock_key, lockout_seconds, 1)
            await redis.delete(fail_key)
    except RedisError:
        logger.warning("Login attempt not recorded; redis unavailable")
        return
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Account temporarily locked due to failed attempts",
        )
