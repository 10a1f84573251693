from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.logging import get_activity_logger
from app.models.activity import Activity
from app.schemas.common import page_offset

activity_logger = get_activity_logger()


def serialize_for_activity(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for column in model.__table__.columns:
        name = column.name
        if name in excluded:
            continue
        data[name] = getattr(model, name)
    return serialize_for_activity(data)


def _diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        keys = set(old.keys()) | set(new.keys())
        for key in sorted(keys, key=str):
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(_diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def _build_summary(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    keys = list(changes.keys())
    snippet = ", ".join(keys[:3])
    suffix = "..." if len(keys) > 3 else ""
    return f"{action}: {snippet}{suffix}"


def log_activity(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    *,
    user_id,
    action: str,
    resource_type: str,
    resource_id: Any,
    loan_id=None,
    description: str | None = None,
    old_values: Any | None = None,
    new_values: Any | None = None,
) -> Activity:
    """
    Stage an activity row on the session and mirror a one-line summary to the activity log.

    The row is committed with the caller's transaction, so a rolled back change leaves no trail.
    """
    serialized_old = serialize_for_activity(old_values) if old_values is not None else None
    serialized_new = serialize_for_activity(new_values) if new_values is not None else None
    changes = None
    if serialized_old is not None or serialized_new is not None:
        changes = _diff_values(serialized_old or {}, serialized_new or {})
        if not changes:
            changes = None
    summary = description or _build_summary(action, changes)
    entry = Activity(
        user_id=user_id,
        action=action,
        description=summary,
        resource_type=resource_type,
        resource_id=str(resource_id),
        loan_id=loan_id,
        old_values=serialized_old,
        new_values=serialized_new,
        changes=changes,
        ip_address=meta.ip_address if meta else None,
        user_agent=meta.user_agent if meta else None,
    )
    db.add(entry)
    activity_logger.info(
        "%s %s=%s %s",
        action,
        resource_type,
        resource_id,
        _build_summary(action, changes),
    )
    return entry


async def _paginate(db: AsyncSession, conditions: list, page: int, page_size: int) -> tuple[list[Activity], int]:
    count_stmt = select(func.count()).select_from(Activity).where(*conditions)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(Activity)
        .where(*conditions)
        .order_by(Activity.created_at.desc())
        .offset(page_offset(page, page_size))
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_recent(db: AsyncSession, *, page: int, page_size: int) -> tuple[list[Activity], int]:
    return await _paginate(db, [], page, page_size)


async def list_by_action(
    db: AsyncSession, action: str, *, page: int, page_size: int
) -> tuple[list[Activity], int]:
    return await _paginate(db, [Activity.action == action], page, page_size)


async def list_for_user(
    db: AsyncSession, user_id: UUID, *, page: int, page_size: int
) -> tuple[list[Activity], int]:
    return await _paginate(db, [Activity.user_id == user_id], page, page_size)


async def list_for_loan(
    db: AsyncSession, loan_id: UUID, *, page: int, page_size: int
) -> tuple[list[Activity], int]:
    return await _paginate(db, [Activity.loan_id == loan_id], page, page_size)


async def archive_old_activities(db: AsyncSession, before: datetime) -> int:
    """Delete activity rows created before ``before``; returns the number removed."""
    stmt = delete(Activity).where(Activity.created_at < before)
    result = await db.execute(stmt)
    await db.commit()
    removed = result.rowcount or 0
    activity_logger.info("activity.archived removed=%s before=%s", removed, before.isoformat())
    return removed
