import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash
from app.core.settings import settings
from app.db.session import AsyncSessionLocal
from app.models.user import User
from app.services import authz, programs

logger = logging.getLogger(__name__)


async def seed_admin_user(session: AsyncSession, admin_role) -> User:
    email = settings.seed_admin_email.lower()
    stmt = select(User).where(func.lower(User.email) == email)
    user = (await session.execute(stmt)).scalar_one_or_none()
    if user is not None:
        logger.info("Admin user already exists user_id=%s", user.id)
        return user

    user = User(
        email=email,
        username=settings.seed_admin_username,
        hashed_password=get_password_hash(settings.seed_admin_password),
        role_id=admin_role.id if admin_role is not None else None,
        is_active=True,
        is_superuser=True,
        token_version=0,
        must_change_password=True,
    )
    session.add(user)
    await session.flush()
    logger.info("Admin user created user_id=%s", user.id)
    return user


async def init_db() -> None:
    """
    Seed system roles, the bootstrap admin account and the default loan programs.
    """
    async with AsyncSessionLocal() as session:
        logger.info("Seeding database")
        roles = await authz.seed_system_roles(session)
        await seed_admin_user(session, roles.get("ADMIN"))
        created = await programs.seed_default_programs(session)
        await session.commit()
        logger.info("Seeding complete roles=%s programs_created=%s", len(roles), created)


if __name__ == "__main__":
    asyncio.run(init_db())
