from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import settings


def default_rate_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


def auth_rate_limit() -> str:
    # Credential endpoints get a tighter budget than the rest of the API.
    return f"{max(1, settings.login_attempt_limit * 2)}/minute"


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[default_rate_limit],
    storage_uri=settings.redis_url,
)

__all__ = ["limiter", "default_rate_limit", "auth_rate_limit"]
