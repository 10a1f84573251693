from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import NotFound, ValidationFailed
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.models.workflow_task import TASK_STATUSES, WorkflowTask
from app.schemas.common import page_offset
from app.schemas.task import TaskCreate, TaskStatus
from app.services.activity import log_activity

logger = logging.getLogger(__name__)

_OPEN_EXCLUDED = (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value)


def _status_value(status: TaskStatus | str) -> str:
    value = status.value if isinstance(status, TaskStatus) else str(status)
    if value not in TASK_STATUSES:
        raise ValidationFailed(
            code="invalid_status",
            message=f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}",
        )
    return value


async def _ensure_loan_exists(db: AsyncSession, loan_id: UUID) -> None:
    stmt = select(LoanApplication.id).where(LoanApplication.id == loan_id)
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise NotFound(code="not_found", message="Loan application not found")


async def _ensure_user_exists(db: AsyncSession, user_id: UUID) -> None:
    stmt = select(User.id).where(User.id == user_id, User.is_active.is_(True))
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise NotFound(code="not_found", message="Assignee not found")


async def create_task(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    current_user: User,
    payload: TaskCreate,
) -> WorkflowTask:
    await _ensure_loan_exists(db, payload.loan_id)
    if payload.assigned_to_id is not None:
        await _ensure_user_exists(db, payload.assigned_to_id)
    task = WorkflowTask(
        loan_id=payload.loan_id,
        task_type=payload.task_type,
        title=payload.title,
        description=payload.description,
        assigned_to_id=payload.assigned_to_id,
        due_date=payload.due_date,
        priority=payload.priority,
        status=TaskStatus.PENDING.value,
    )
    db.add(task)
    await db.flush()
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="task.created",
        resource_type="workflow_task",
        resource_id=task.id,
        loan_id=task.loan_id,
        description=f"Task created: {task.title}",
        new_values={
            "title": task.title,
            "task_type": task.task_type,
            "assigned_to_id": task.assigned_to_id,
            "priority": task.priority,
        },
    )
    return task


async def get_task_or_404(db: AsyncSession, task_id: UUID) -> WorkflowTask:
    stmt = select(WorkflowTask).where(WorkflowTask.id == task_id)
    task = (await db.execute(stmt)).scalar_one_or_none()
    if task is None:
        raise NotFound(code="not_found", message="Task not found")
    return task


async def list_for_loan(
    db: AsyncSession, loan_id: UUID, *, page: int, page_size: int
) -> tuple[list[WorkflowTask], int]:
    count_stmt = select(func.count()).select_from(WorkflowTask).where(WorkflowTask.loan_id == loan_id)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(WorkflowTask)
        .where(WorkflowTask.loan_id == loan_id)
        .order_by(WorkflowTask.due_date.asc().nulls_last(), WorkflowTask.created_at.asc())
        .offset(page_offset(page, page_size))
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_for_assignee(
    db: AsyncSession, user_id: UUID, *, page: int, page_size: int
) -> tuple[list[WorkflowTask], int]:
    conditions = [
        WorkflowTask.assigned_to_id == user_id,
        WorkflowTask.status != TaskStatus.COMPLETED.value,
    ]
    count_stmt = select(func.count()).select_from(WorkflowTask).where(*conditions)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(WorkflowTask)
        .where(*conditions)
        .order_by(WorkflowTask.due_date.asc().nulls_last())
        .offset(page_offset(page, page_size))
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_overdue(db: AsyncSession, *, now: datetime | None = None) -> list[WorkflowTask]:
    current = now or datetime.now(timezone.utc)
    stmt = (
        select(WorkflowTask)
        .where(
            WorkflowTask.due_date.is_not(None),
            WorkflowTask.due_date < current,
            WorkflowTask.status.not_in(_OPEN_EXCLUDED),
        )
        .order_by(WorkflowTask.due_date.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def stats(db: AsyncSession) -> dict[str, int]:
    stmt = select(WorkflowTask.status, func.count()).group_by(WorkflowTask.status)
    rows = (await db.execute(stmt)).all()
    by_status = {status: 0 for status in TASK_STATUSES}
    for status, count in rows:
        by_status[status] = int(count)
    return by_status


async def update_status(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    task: WorkflowTask,
    current_user: User,
    status: TaskStatus | str,
) -> WorkflowTask:
    target = _status_value(status)
    previous = task.status
    task.status = target
    if target == TaskStatus.COMPLETED.value:
        task.completed_at = task.completed_at or datetime.now(timezone.utc)
    else:
        task.completed_at = None
    db.add(task)
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="task.status_changed",
        resource_type="workflow_task",
        resource_id=task.id,
        loan_id=task.loan_id,
        old_values={"status": previous},
        new_values={"status": target},
    )
    await db.flush()
    logger.info("Task status changed task_id=%s from=%s to=%s", task.id, previous, target)
    return task


async def assign(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    task: WorkflowTask,
    current_user: User,
    assignee_id: UUID,
) -> WorkflowTask:
    await _ensure_user_exists(db, assignee_id)
    previous = task.assigned_to_id
    task.assigned_to_id = assignee_id
    db.add(task)
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="task.assigned",
        resource_type="workflow_task",
        resource_id=task.id,
        loan_id=task.loan_id,
        old_values={"assigned_to_id": previous},
        new_values={"assigned_to_id": assignee_id},
    )
    await db.flush()
    return task


async def delete_task(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    task: WorkflowTask,
    current_user: User,
) -> None:
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="task.deleted",
        resource_type="workflow_task",
        resource_id=task.id,
        loan_id=task.loan_id,
        old_values={"title": task.title, "status": task.status},
    )
    await db.delete(task)
    await db.flush()
