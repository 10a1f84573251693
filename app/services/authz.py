from typing import Iterable, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import PermissionCode
from app.models.role import Role
from app.models.user import User


def _normalize_codes(raw: Iterable[str] | None) -> Set[str]:
    permissions: set[str] = set()
    for value in raw or []:
        try:
            code = PermissionCode(value)
        except ValueError:
            continue
        permissions.add(code.value)
    return permissions


async def _load_permissions(db: AsyncSession, user: User) -> Set[str]:
    role = user.__dict__.get("role")
    if role is not None:
        return _normalize_codes(role.permissions)
    if user.role_id is None:
        return set()
    stmt = select(Role.permissions).where(Role.id == user.role_id)
    result = await db.execute(stmt)
    return _normalize_codes(result.scalar_one_or_none())


async def check_permission(
    user: User,
    permission_code: PermissionCode | str,
    db: AsyncSession,
) -> bool:
    """Superusers hold every permission; everyone else gets what their role grants."""
    if user.is_superuser:
        return True
    target = permission_code.value if isinstance(permission_code, PermissionCode) else str(permission_code)
    permission_set = await _load_permissions(db, user)
    return target in permission_set


SYSTEM_ROLE_DEFINITIONS = {
    "ADMIN": {
        "description": "Full control over the platform",
        "permissions": PermissionCode.list_all(),
    },
    "LOAN_OFFICER": {
        "description": "Works the pipeline: reviews applications, manages tasks and documents",
        "permissions": PermissionCode.normalize(
            [
                PermissionCode.LOAN_VIEW_ALL,
                PermissionCode.LOAN_MANAGE,
                PermissionCode.DOCUMENT_MANAGE,
                PermissionCode.DOCUMENT_VERIFY,
                PermissionCode.TASK_VIEW,
                PermissionCode.TASK_MANAGE,
                PermissionCode.ACTIVITY_VIEW_ALL,
            ]
        ),
    },
    "UNDERWRITER": {
        "description": "Makes credit decisions and verifies documentation",
        "permissions": PermissionCode.normalize(
            [
                PermissionCode.LOAN_VIEW_ALL,
                PermissionCode.LOAN_MANAGE,
                PermissionCode.DOCUMENT_VERIFY,
                PermissionCode.TASK_VIEW,
                PermissionCode.TASK_MANAGE,
                PermissionCode.ACTIVITY_VIEW_ALL,
            ]
        ),
    },
    "BORROWER": {
        # Applicants act on their own records through ownership checks
        "description": "Self-service applicant",
        "permissions": [],
    },
}

DEFAULT_ROLE_NAME = "BORROWER"


async def seed_system_roles(db: AsyncSession) -> dict[str, Role]:
    """
    Ensure system roles exist with their current permission sets, returning a name->Role mapping.
    """
    existing_result = await db.execute(select(Role))
    existing = {role.name: role for role in existing_result.scalars().all()}

    created: dict[str, Role] = {}
    for name, definition in SYSTEM_ROLE_DEFINITIONS.items():
        role = existing.get(name)
        if role:
            role.permissions = definition["permissions"]
            role.description = definition["description"]
        else:
            role = Role(
                name=name,
                description=definition["description"],
                permissions=definition["permissions"],
            )
            db.add(role)
        created[name] = role
    await db.flush()
    return created


async def get_role_by_name(db: AsyncSession, name: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()
