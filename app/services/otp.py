from __future__ import annotations

import hmac
import logging
import secrets

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.errors import InternalError, UnauthorizedError
from app.core.settings import settings

logger = logging.getLogger(__name__)


def _code_key(email: str) -> str:
    return f"otp:{email.lower()}"


def _attempts_key(email: str) -> str:
    return f"otp_attempts:{email.lower()}"


def generate_otp(length: int | None = None) -> str:
    size = length or settings.otp_length
    return "".join(secrets.choice("0123456789") for _ in range(size))


async def store_otp(redis: Redis, email: str, code: str) -> None:
    """Replace any outstanding code for the address and reset its attempt counter."""
    try:
        await redis.setex(_code_key(email), settings.otp_ttl_seconds, code)
        await redis.delete(_attempts_key(email))
    except RedisError as exc:
        logger.error("Failed to store verification code", exc_info=exc)
        raise InternalError("Verification code could not be issued") from exc


async def verify_otp(redis: Redis, email: str, code: str) -> None:
    """Single-use check; too many wrong guesses burn the code."""
    try:
        stored = await redis.get(_code_key(email))
        if stored is None:
            raise UnauthorizedError("Invalid or expired verification code", code="invalid_code")
        if hmac.compare_digest(str(stored).encode(), code.encode()):
            await redis.delete(_code_key(email), _attempts_key(email))
            return
        attempts = await redis.incr(_attempts_key(email))
        await redis.expire(_attempts_key(email), settings.otp_ttl_seconds)
        if attempts >= settings.otp_max_attempts:
            await redis.delete(_code_key(email), _attempts_key(email))
    except RedisError as exc:
        logger.error("Failed to verify code", exc_info=exc)
        raise InternalError("Verification code could not be checked") from exc
    raise UnauthorizedError("Invalid or expired verification code", code="invalid_code")
