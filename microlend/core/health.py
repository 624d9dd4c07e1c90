from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from microlend import __version__
from microlend.core.settings import settings
from microlend.db.session import engine
from microlend.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database readiness check failed: %s", exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


async def _check_redis() -> dict[str, str]:
    try:
        await get_redis_client().ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis readiness check failed: %s", exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


async def _check_api() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    checks = {
        "api": await _check_api(),
        "database": await _check_db(),
        "redis": await _check_redis(),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": __version__,
        "timestamp": _now(),
        "checks": checks,
    }
