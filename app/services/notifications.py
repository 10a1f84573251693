from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.models.notification import Notification
from app.schemas.common import page_offset

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_OPENED = "OPENED"


def create_notification(
    db: AsyncSession,
    *,
    user_id,
    notification_type: str,
    subject: str,
    body: str,
    loan_id=None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        loan_id=loan_id,
        notification_type=notification_type,
        subject=subject[:255],
        body=body,
        status=STATUS_PENDING,
    )
    db.add(notification)
    logger.info(
        "Notification queued type=%s user_id=%s loan_id=%s", notification_type, user_id, loan_id
    )
    return notification


async def list_for_user(
    db: AsyncSession, user_id: UUID, *, page: int, page_size: int
) -> tuple[list[Notification], int]:
    count_stmt = select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .offset(page_offset(page, page_size))
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_unread(db: AsyncSession, user_id: UUID) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id, Notification.status == STATUS_PENDING)
        .order_by(Notification.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_for_loan(db: AsyncSession, user_id: UUID, loan_id: UUID) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id, Notification.loan_id == loan_id)
        .order_by(Notification.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_for_user_or_404(db: AsyncSession, user_id: UUID, notification_id: UUID) -> Notification:
    stmt = select(Notification).where(
        Notification.id == notification_id, Notification.user_id == user_id
    )
    notification = (await db.execute(stmt)).scalar_one_or_none()
    if notification is None:
        raise NotFound(code="not_found", message="Notification not found")
    return notification


def mark_opened(db: AsyncSession, notification: Notification) -> Notification:
    if notification.status != STATUS_OPENED:
        notification.status = STATUS_OPENED
        notification.opened_at = datetime.now(timezone.utc)
        db.add(notification)
    return notification


async def clear_all(db: AsyncSession, user_id: UUID) -> int:
    stmt = delete(Notification).where(Notification.user_id == user_id)
    result = await db.execute(stmt)
    return int(result.rowcount or 0)


async def delete_notification(db: AsyncSession, notification: Notification) -> None:
    await db.delete(notification)
    await db.flush()
