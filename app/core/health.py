from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from sqlalchemy import text

from app.core.settings import settings

APP_VERSION = "0.1.0"


async def _check_db(app: FastAPI) -> dict[str, str]:
    database = getattr(app.state, "database", None)
    if database is None:
        return {"status": "error", "error": "not_configured"}
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": exc.__class__.__name__}


async def _check_redis(app: FastAPI) -> dict[str, str]:
    redis = getattr(app.state, "redis", None)
    if redis is None:
        return {"status": "error", "error": "not_configured"}
    try:
        await redis.ping()
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": exc.__class__.__name__}


async def _check_api() -> dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload(app: FastAPI) -> dict[str, Any]:
    checks = {
        "api": await _check_api(),
        "database": await _check_db(app),
        "redis": await _check_redis(app),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
