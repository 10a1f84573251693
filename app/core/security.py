from __future__ import annotations

from datetime import datetime, timedelta, timezone
import re
import uuid
from functools import lru_cache
from typing import Any

from passlib.context import CryptContext
from jose import JWTError, jwt

from app.core.settings import settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
PASSWORD_RESET_TOKEN_TYPE = "password_reset"

_SPECIAL_CHARACTERS = re.compile(r"[^A-Za-z0-9]")


def password_strength_errors(password: str) -> list[str]:
    """Return every rule the password breaks; empty when it is acceptable."""
    errors: list[str] = []
    min_len = settings.default_password_min_length
    if len(password) < min_len:
        errors.append(f"Password must be at least {min_len} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain a digit")
    if not _SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain a special character")
    return errors


def get_password_hash(password: str) -> str:
    min_len = settings.default_password_min_length
    if len(password) < min_len:
        raise ValueError(f"Password too short; minimum {min_len} characters")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


class JWTKeyError(RuntimeError):
    pass


def _uses_key_pair() -> bool:
    return settings.jwt_algorithm.upper().startswith(("RS", "ES", "PS"))


@lru_cache(maxsize=1)
def _load_private_key() -> str:
    if not _uses_key_pair():
        return settings.secret_key
    if settings.jwt_private_key:
        return settings.jwt_private_key
    if settings.jwt_private_key_path:
        return _read_key(settings.jwt_private_key_path)
    raise JWTKeyError("JWT private key not configured")


@lru_cache(maxsize=1)
def _load_public_key() -> str:
    if not _uses_key_pair():
        return settings.secret_key
    if settings.jwt_public_key:
        return settings.jwt_public_key
    if settings.jwt_public_key_path:
        return _read_key(settings.jwt_public_key_path)
    raise JWTKeyError("JWT public key not configured")


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


def _encode(claims: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode: dict[str, Any] = {
        **claims,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, _load_private_key(), algorithm=settings.jwt_algorithm)


def create_access_token(
    subject: str,
    expires_delta: timedelta | None = None,
    token_version: int | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    claims: dict[str, Any] = {"sub": subject, **(extra_claims or {})}
    if token_version is not None:
        claims["tv"] = token_version
    return _encode(
        claims,
        ACCESS_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(
    subject: str,
    expires_delta: timedelta | None = None,
    token_version: int | None = None,
    jti: str | None = None,
) -> str:
    claims: dict[str, Any] = {"sub": subject, "jti": jti or str(uuid.uuid4())}
    if token_version is not None:
        claims["tv"] = token_version
    return _encode(
        claims,
        REFRESH_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.refresh_token_expire_minutes),
    )


def create_password_reset_token(subject: str, token_version: int) -> str:
    return _encode(
        {"sub": subject, "tv": token_version},
        PASSWORD_RESET_TOKEN_TYPE,
        timedelta(minutes=settings.password_reset_expire_minutes),
    )


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    public_key = _load_public_key()
    try:
        payload = jwt.decode(token, public_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if expected_type and payload.get("type") != expected_type:
        raise ValueError(f"Unexpected token type: {payload.get('type')}")
    return payload
