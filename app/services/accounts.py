from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.api.auth_utils import constant_time_verify
from app.core.errors import AuthenticationFailed, Conflict, ValidationFailed
from app.core.security import (
    PASSWORD_RESET_TOKEN_TYPE,
    create_password_reset_token,
    decode_token,
    get_password_hash,
    password_strength_errors,
)
from app.core.settings import settings
from app.models.user import User
from app.schemas.auth import RegisterRequest
from app.services import authz, sessions
from app.services.activity import log_activity

logger = logging.getLogger(__name__)


def ensure_strong_password(password: str) -> None:
    errors = password_strength_errors(password)
    if errors:
        raise ValidationFailed(
            code="weak_password",
            message="Password does not meet strength requirements",
            details={"errors": errors},
        )


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    return (await db.execute(stmt)).scalar_one_or_none()


async def register_user(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    payload: RegisterRequest,
) -> User:
    ensure_strong_password(payload.password)
    email = str(payload.email).lower()
    stmt = select(User).where(
        or_(func.lower(User.email) == email, func.lower(User.username) == payload.username.lower())
    )
    existing = (await db.execute(stmt)).scalars().first()
    if existing is not None:
        field = "email" if existing.email.lower() == email else "username"
        raise Conflict(
            code=f"{field}_taken",
            message=f"A user with this {field} already exists",
            details={"field": field},
        )

    role = await authz.get_role_by_name(db, authz.DEFAULT_ROLE_NAME)
    user = User(
        email=email,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        hashed_password=get_password_hash(payload.password),
        role_id=role.id if role else None,
        is_active=True,
        is_superuser=False,
        token_version=0,
        must_change_password=False,
    )
    if role is not None:
        user.role = role
    db.add(user)
    await db.flush()
    log_activity(
        db,
        meta,
        user_id=user.id,
        action="user.registered",
        resource_type="user",
        resource_id=user.id,
        new_values={"email": user.email, "username": user.username, "role": user.role_name},
    )
    logger.info("User registered user_id=%s", user.id)
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if not constant_time_verify(user.hashed_password if user else None, password):
        raise AuthenticationFailed(code="invalid_credentials", message="Invalid email or password")
    if not user.is_active:
        raise AuthenticationFailed(code="inactive_user", message="Inactive user")
    return user


def mark_logged_in(db: AsyncSession, user: User) -> None:
    now = datetime.now(timezone.utc)
    user.last_login_at = now
    user.last_active_at = now
    db.add(user)


async def change_password(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    user: User,
    *,
    current_password: str,
    new_password: str,
) -> None:
    if not constant_time_verify(user.hashed_password, current_password):
        raise ValidationFailed(code="invalid_password", message="Current password is incorrect")
    if current_password == new_password:
        raise ValidationFailed(
            code="password_reused", message="New password must differ from current password"
        )
    ensure_strong_password(new_password)

    user.hashed_password = get_password_hash(new_password)
    user.must_change_password = False
    user.last_active_at = datetime.now(timezone.utc)
    await sessions.revoke_everything(db, user)
    log_activity(
        db,
        meta,
        user_id=user.id,
        action="user.password_changed",
        resource_type="user",
        resource_id=user.id,
    )
    await db.flush()


async def request_password_reset(db: AsyncSession, email: str) -> str | None:
    """Return a reset token when the account exists; callers answer identically either way."""
    user = await get_user_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown or inactive account")
        return None
    token = create_password_reset_token(str(user.id), user.token_version)
    logger.info("Password reset token issued user_id=%s", user.id)
    if settings.environment.lower() == "development":
        logger.info("Development password reset token user_id=%s token=%s", user.id, token)
    return token


async def confirm_password_reset(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    *,
    reset_token: str,
    new_password: str,
) -> User:
    try:
        payload = decode_token(reset_token, expected_type=PASSWORD_RESET_TOKEN_TYPE)
    except ValueError as exc:
        raise ValidationFailed(code="invalid_reset_token", message="Invalid or expired reset token") from exc
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise ValidationFailed(code="invalid_reset_token", message="Invalid or expired reset token") from exc

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None or not user.is_active or payload.get("tv") != user.token_version:
        raise ValidationFailed(code="invalid_reset_token", message="Invalid or expired reset token")
    ensure_strong_password(new_password)

    user.hashed_password = get_password_hash(new_password)
    user.must_change_password = False
    await sessions.revoke_everything(db, user)
    log_activity(
        db,
        meta,
        user_id=user.id,
        action="user.password_reset",
        resource_type="user",
        resource_id=user.id,
    )
    await db.flush()
    logger.info("Password reset completed user_id=%s", user.id)
    return user
