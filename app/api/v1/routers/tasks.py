from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MessageResponse, Page
from app.schemas.task import TaskAssign, TaskCreate, TaskOut, TaskStats, TaskStatusUpdate
from app.services import tasks

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED, summary="Create a task")
async def create_task(
    payload: TaskCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.TASK_MANAGE)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> TaskOut:
    task = await tasks.create_task(db, meta, current_user, payload)
    task_id = task.id
    await db.commit()
    return TaskOut.model_validate(await tasks.get_task_or_404(db, task_id))


@router.get("/my-tasks", response_model=Page[TaskOut], summary="Open tasks assigned to me")
async def list_my_tasks(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Page[TaskOut]:
    items, total = await tasks.list_for_assignee(db, current_user.id, page=page, page_size=page_size)
    return Page[TaskOut].build([TaskOut.model_validate(item) for item in items], total, page, page_size)


@router.get("/overdue", response_model=list[TaskOut], summary="Open tasks past their due date")
async def list_overdue_tasks(
    _: object = Depends(deps.require_permission(PermissionCode.TASK_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
    items = await tasks.list_overdue(db)
    return [TaskOut.model_validate(item) for item in items]


@router.get("/stats", response_model=TaskStats, summary="Task counts by status")
async def get_task_stats(
    _: object = Depends(deps.require_permission(PermissionCode.TASK_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> TaskStats:
    by_status = await tasks.stats(db)
    return TaskStats(total=sum(by_status.values()), by_status=by_status)


@router.get("/loans/{loan_id}", response_model=Page[TaskOut], summary="Tasks for a loan")
async def list_loan_tasks(
    loan_id: UUID,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: object = Depends(deps.require_permission(PermissionCode.TASK_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> Page[TaskOut]:
    items, total = await tasks.list_for_loan(db, loan_id, page=page, page_size=page_size)
    return Page[TaskOut].build([TaskOut.model_validate(item) for item in items], total, page, page_size)


@router.patch("/{task_id}/status", response_model=TaskOut, summary="Change task status")
async def update_task_status(
    task_id: UUID,
    payload: TaskStatusUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.TASK_MANAGE)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> TaskOut:
    task = await tasks.get_task_or_404(db, task_id)
    await tasks.update_status(db, meta, task, current_user, payload.status)
    await db.commit()
    return TaskOut.model_validate(await tasks.get_task_or_404(db, task_id))


@router.patch("/{task_id}/assign", response_model=TaskOut, summary="Reassign a task")
async def assign_task(
    task_id: UUID,
    payload: TaskAssign,
    current_user: User = Depends(deps.require_permission(PermissionCode.TASK_MANAGE)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> TaskOut:
    task = await tasks.get_task_or_404(db, task_id)
    await tasks.assign(db, meta, task, current_user, payload.assigned_to_id)
    await db.commit()
    return TaskOut.model_validate(await tasks.get_task_or_404(db, task_id))


@router.delete("/{task_id}", response_model=MessageResponse, summary="Delete a task")
async def delete_task(
    task_id: UUID,
    current_user: User = Depends(deps.require_permission(PermissionCode.TASK_MANAGE)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> MessageResponse:
    task = await tasks.get_task_or_404(db, task_id)
    await tasks.delete_task(db, meta, task, current_user)
    await db.commit()
    return MessageResponse(message="Task deleted")
