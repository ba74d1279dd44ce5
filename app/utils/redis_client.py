from redis.asyncio import Redis

from app.core.settings import Settings


def create_redis_client(settings: Settings) -> Redis:
    """Build the shared client at startup; callers receive it through dependencies."""
    common = {
        "decode_responses": True,
        "socket_timeout": settings.redis_socket_timeout_seconds,
        "socket_connect_timeout": settings.redis_socket_timeout_seconds,
    }
    if settings.redis_url:
        return Redis.from_url(settings.redis_url, **common)
    return Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        **common,
    )
