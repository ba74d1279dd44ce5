from functools import lru_cache
from typing import Optional

from redis.asyncio import Redis

from app.core.security import pwd_context, verify_password
from app.core.settings import settings
from app.utils.login_security import check_lockout, rate_limit, register_login_attempt


@lru_cache(maxsize=1)
def _fake_hash() -> str:
    return pwd_context.hash("timing-equalizer-password")


def constant_time_verify(user_password_hash: Optional[str], password: str) -> bool:
    if user_password_hash:
        return verify_password(password, user_password_hash)
    # Dummy verification to equalize timing
    verify_password(password, _fake_hash())
    return False


def login_identifier(email: str) -> str:
    return email.strip().lower()


async def enforce_login_limits(redis: Redis, ip: str, email: str) -> None:
    identifier = login_identifier(email)
    await rate_limit(redis, f"ip:{ip}", limit=settings.rate_limit_per_minute, window_seconds=60)
    await rate_limit(redis, f"email:{identifier}", limit=settings.rate_limit_per_minute, window_seconds=60)
    await check_lockout(redis, identifier)


async def record_login_attempt(redis: Redis, email: str, success: bool) -> None:
    await register_login_attempt(redis, login_identifier(email), success)
