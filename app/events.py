import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import Database
from app.services.notifications import build_notifier
from app.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup", extra={"environment": settings.environment})
        app.state.database = Database.from_settings(settings)
        app.state.redis = create_redis_client(settings)
        app.state.notifier = build_notifier(settings)
        if settings.seed_on_startup:
            await init_db(app.state.database)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        notifier = getattr(app.state, "notifier", None)
        if notifier is not None:
            await notifier.aclose()
        redis = getattr(app.state, "redis", None)
        if redis is not None:
            await redis.aclose()
        database = getattr(app.state, "database", None)
        if database is not None:
            await database.dispose()
