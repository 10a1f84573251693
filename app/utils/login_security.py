import logging

from fastapi import HTTPException, status
from redis.exceptions import RedisError

from app.core.settings import settings
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def _ttl(seconds: int) -> int:
    return max(1, seconds)


def _normalize(identifier: str) -> str:
    return identifier.strip().lower()


async def rate_limit(key: str, limit: int, window_seconds: int) -> None:
    redis = get_redis_client()
    try:
        pipe = redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        count, _ = await pipe.execute()
    except RedisError:
        logger.warning("Rate limit check skipped for %s; redis unavailable", key)
        return
    if count > limit:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")


async def check_lockout(identifier: str) -> None:
    redis = get_redis_client()
    try:
        locked_until = await redis.get(f"lock:{_normalize(identifier)}")
    except RedisError:
        logger.warning("Lockout check skipped; redis unavailable")
        return
    if locked_until:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "account_locked", "message": "Too many login attempts; try later"},
        )


async def register_login_attempt(identifier: str, success: bool) -> None:
    redis = get_redis_client()
    key = _normalize(identifier)
    fail_key = f"fail:{key}"
    lock_key = f"lock:{key}"
    window = _ttl(settings.login_lockout_minutes * 60)
    try:
        if success:
            await redis.delete(fail_key, lock_key)
            return
        attempts = await redis.incr(fail_key)
        await redis.expire(fail_key, window)
        locked = attempts >= settings.login_attempt_limit
        if locked:
            await redis.setex(lock_key, window, 1)
            await redis.delete(fail_key)
    except RedisError:
        logger.warning("Login attempt not recorded; redis unavailable")
        return
    if locked:
        logger.warning("Account locked after %s failed login attempts", attempts)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "code": "account_locked",
                "message": "Account temporarily locked due to failed attempts",
            },
        )
