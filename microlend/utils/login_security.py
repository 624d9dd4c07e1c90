import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from redis.exceptions import RedisError

from microlend.core.settings import settings
from microlend.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)


def _ttl(seconds: int) -> int:
    return max(1, seconds)


def _lockout_seconds() -> int:
    return _ttl(settings.login_lockout_minutes * 60)


async def rate_limit(key: str, limit: int, window_seconds: int) -> None:
    redis = get_redis_client()
    try:
        pipe = redis.pipeline()
        pipe.incr(redis_key("rl", key))
        pipe.expire(redis_key("rl", key), window_seconds)
        count, _ = await pipe.execute()
    except RedisError as exc:
        logger.warning("Login rate limit check skipped: %s", exc)
        return
    if count > limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "rate_limited", "message": "Rate limit exceeded"},
        )


async def check_lockout(identifier: str) -> None:
    redis = get_redis_client()
    try:
        locked = await redis.get(redis_key("lock", identifier))
    except RedisError as exc:
        logger.warning("Lockout check skipped: %s", exc)
        return
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "account_locked", "message": "Too many login attempts; try later"},
        )


async def register_login_attempt(identifier: str, success: bool) -> None:
    """Count failures per identifier and lock it once the limit is hit."""
    redis = get_redis_client()
    fail_key = redis_key("fail", identifier)
    lock_key = redis_key("lock", identifier)
    try:
        if success:
            await redis.delete(fail_key, lock_key)
            return
        attempts = await redis.incr(fail_key)
        await redis.expire(fail_key, _lockout_seconds())
        locked = attempts >= settings.login_attempt_limit
        if locked:
            await redis.setex(lock_key, _lockout_seconds(), 1)
            await redis.delete(fail_key)
    except RedisError as exc:
        logger.warning("Login attempt bookkeeping skipped: %s", exc)
        return
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "code": "account_locked",
                "message": "Account temporarily locked due to failed attempts",
            },
        )


async def is_refresh_used(jti: str) -> bool:
    redis = get_redis_client()
    try:
        return bool(await redis.get(redis_key("refresh_used", jti)))
    except RedisError:
        return False


async def mark_refresh_used(jti: str, expires_at: datetime) -> None:
    redis = get_redis_client()
    ttl = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    if ttl <= 0:
        return
    try:
        await redis.setex(redis_key("refresh_used", jti), ttl, 1)
    except RedisError as exc:
        logger.warning("Could not record refresh token use: %s", exc)
