from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.activity import ActivityOut
from app.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, Page
from app.services import activity, loan_applications

router = APIRouter(prefix="/activities", tags=["activities"])


def _page(items, total: int, page: int, page_size: int) -> Page[ActivityOut]:
    return Page[ActivityOut].build(
        [ActivityOut.model_validate(item) for item in items], total, page, page_size
    )


@router.get("", response_model=Page[ActivityOut], summary="Recent activity across the system")
async def list_recent_activities(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: object = Depends(deps.require_permission(PermissionCode.ACTIVITY_VIEW_ALL)),
    db: AsyncSession = Depends(get_db),
) -> Page[ActivityOut]:
    items, total = await activity.list_recent(db, page=page, page_size=page_size)
    return _page(items, total, page, page_size)


@router.get("/action", response_model=Page[ActivityOut], summary="Activity filtered by action")
async def list_activities_by_action(
    action: str = Query(min_length=1, max_length=100),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: object = Depends(deps.require_permission(PermissionCode.ACTIVITY_VIEW_ALL)),
    db: AsyncSession = Depends(get_db),
) -> Page[ActivityOut]:
    items, total = await activity.list_by_action(db, action, page=page, page_size=page_size)
    return _page(items, total, page, page_size)


@router.get("/user/my-activities", response_model=Page[ActivityOut], summary="My own activity")
async def list_my_activities(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Page[ActivityOut]:
    items, total = await activity.list_for_user(db, current_user.id, page=page, page_size=page_size)
    return _page(items, total, page, page_size)


@router.get("/loans/{loan_id}", response_model=Page[ActivityOut], summary="Activity for a loan")
async def list_loan_activities(
    loan_id: UUID,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Page[ActivityOut]:
    application = await loan_applications.get_accessible_or_404(db, current_user, loan_id)
    items, total = await activity.list_for_loan(db, application.id, page=page, page_size=page_size)
    return _page(items, total, page, page_size)
