from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, Page
from app.schemas.notification import ClearedResponse, NotificationOut
from app.services import loan_applications, notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=Page[NotificationOut], summary="List my notifications")
async def list_notifications(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Page[NotificationOut]:
    items, total = await notifications.list_for_user(
        db, current_user.id, page=page, page_size=page_size
    )
    return Page[NotificationOut].build(
        [NotificationOut.model_validate(item) for item in items], total, page, page_size
    )


@router.get("/unread", response_model=list[NotificationOut], summary="List unread notifications")
async def list_unread_notifications(
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    items = await notifications.list_unread(db, current_user.id)
    return [NotificationOut.model_validate(item) for item in items]


@router.get(
    "/loans/{loan_id}",
    response_model=list[NotificationOut],
    summary="List my notifications about a loan",
)
async def list_loan_notifications(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    await loan_applications.get_accessible_or_404(db, current_user, loan_id)
    items = await notifications.list_for_loan(db, current_user.id, loan_id)
    return [NotificationOut.model_validate(item) for item in items]


@router.post("/clear-all", response_model=ClearedResponse, summary="Delete all my notifications")
async def clear_notifications(
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> ClearedResponse:
    deleted = await notifications.clear_all(db, current_user.id)
    await db.commit()
    return ClearedResponse(deleted=deleted)


@router.post(
    "/{notification_id}/mark-opened",
    response_model=NotificationOut,
    summary="Mark a notification as opened",
)
async def mark_notification_opened(
    notification_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    notification = await notifications.get_for_user_or_404(db, current_user.id, notification_id)
    notifications.mark_opened(db, notification)
    await db.commit()
    return NotificationOut.model_validate(
        await notifications.get_for_user_or_404(db, current_user.id, notification_id)
    )


@router.delete("/{notification_id}", status_code=204, summary="Delete a notification")
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    notification = await notifications.get_for_user_or_404(db, current_user.id, notification_id)
    await notifications.delete_notification(db, notification)
    await db.commit()
    return None
