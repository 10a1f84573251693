"""Refresh-token sessions: issuance, rotation with reuse detection, and revocation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import AuthenticationFailed
from app.core.security import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from app.core.settings import settings
from app.models.user import User
from app.models.user_session import UserSession
from app.schemas.auth import TokenPair

logger = logging.getLogger(__name__)


def _access_claims(user: User) -> dict:
    return {"email": user.email, "username": user.username, "role": user.role_name}


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def issue_tokens(
    db: AsyncSession,
    user: User,
    meta: deps.RequestMeta | None = None,
) -> tuple[TokenPair, UserSession]:
    """Open a session row for a fresh refresh token and return the token pair."""
    now = datetime.now(timezone.utc)
    jti = uuid4().hex
    session = UserSession(
        user_id=user.id,
        refresh_jti=jti,
        expires_at=now + timedelta(minutes=settings.refresh_token_expire_minutes),
        ip_address=meta.ip_address if meta else None,
        user_agent=meta.user_agent if meta else None,
        created_at=now,
    )
    db.add(session)
    await db.flush()
    tokens = TokenPair(
        access_token=create_access_token(
            str(user.id),
            token_version=user.token_version,
            extra_claims=_access_claims(user),
        ),
        refresh_token=create_refresh_token(
            str(user.id),
            token_version=user.token_version,
            jti=jti,
        ),
        expires_in=settings.access_token_expire_minutes * 60,
    )
    return tokens, session


async def revoke_all_sessions(db: AsyncSession, user_id: UUID) -> None:
    await db.execute(
        update(UserSession)
        .where(UserSession.user_id == user_id, UserSession.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


async def revoke_everything(db: AsyncSession, user: User) -> None:
    """Revoke all refresh sessions and invalidate outstanding access tokens."""
    await revoke_all_sessions(db, user.id)
    user.token_version = (user.token_version or 0) + 1
    db.add(user)


async def rotate_refresh_token(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    refresh_token: str | None,
) -> tuple[User, TokenPair]:
    if not refresh_token:
        raise AuthenticationFailed(code="invalid_token", message="Refresh token missing")
    try:
        payload = decode_token(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
    except ValueError as exc:
        raise AuthenticationFailed(code="invalid_token", message=str(exc)) from exc

    jti = payload.get("jti")
    token_version = payload.get("tv")
    if not jti or token_version is None or not payload.get("sub"):
        raise AuthenticationFailed(code="invalid_token", message="Invalid token")

    stmt = select(UserSession).where(UserSession.refresh_jti == jti)
    session = (await db.execute(stmt)).scalar_one_or_none()
    if session is None or str(session.user_id) != str(payload.get("sub")):
        raise AuthenticationFailed(code="invalid_token", message="Refresh session not found")

    user_stmt = select(User).where(User.id == session.user_id)
    user = (await db.execute(user_stmt)).scalar_one_or_none()
    if user is None:
        raise AuthenticationFailed(code="invalid_token", message="User not found")

    if session.revoked_at is not None:
        # A revoked token coming back means it leaked; shut every session down.
        logger.warning("Refresh token reuse detected user_id=%s session_id=%s", user.id, session.id)
        await revoke_everything(db, user)
        await db.commit()
        raise AuthenticationFailed(
            code="refresh_token_reused",
            message="Refresh token reuse detected; all sessions revoked",
        )

    now = datetime.now(timezone.utc)
    if _as_aware(session.expires_at) <= now:
        raise AuthenticationFailed(code="invalid_token", message="Refresh token expired")
    if not user.is_active:
        raise AuthenticationFailed(code="inactive_user", message="Inactive user")
    if user.token_version != token_version:
        raise AuthenticationFailed(code="token_revoked", message="Token revoked")

    tokens, replacement = await issue_tokens(db, user, meta)
    session.revoked_at = now
    session.replaced_by_id = replacement.id
    db.add(session)
    user.last_active_at = now
    db.add(user)
    await db.flush()
    logger.info("Refresh token rotated user_id=%s session_id=%s", user.id, replacement.id)
    return user, tokens
