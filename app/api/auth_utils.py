from functools import lru_cache
from typing import Optional

from fastapi import Request, Response

from app.core.security import pwd_context, verify_password
from app.core.settings import settings
from app.utils.login_security import check_lockout, rate_limit, register_login_attempt

_DUMMY_PASSWORD = "clarifi-timing-dummy"

REFRESH_COOKIE_PATH = "/api/v1/auth"


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return pwd_context.hash(_DUMMY_PASSWORD)


def constant_time_verify(user_password_hash: Optional[str], password: str) -> bool:
    if user_password_hash:
        return verify_password(password, user_password_hash)
    # Dummy verification to equalize timing
    verify_password(password, _dummy_hash())
    return False


async def enforce_login_limits(ip: str, email: str) -> None:
    await rate_limit(f"ip:{ip}", limit=settings.rate_limit_per_minute, window_seconds=60)
    await rate_limit(f"email:{email.lower()}", limit=settings.rate_limit_per_minute, window_seconds=60)
    await check_lockout(email)


async def record_login_attempt(email: str, success: bool) -> None:
    await register_login_attempt(email, success)


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        max_age=settings.refresh_token_expire_minutes * 60,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite="strict",
        path=REFRESH_COOKIE_PATH,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite="strict",
    )


def refresh_token_from_request(request: Request, body_token: Optional[str]) -> Optional[str]:
    if body_token:
        return body_token
    return request.cookies.get(settings.refresh_cookie_name)
