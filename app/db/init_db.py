import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import ADMIN_ROLE
from app.core.security import get_password_hash
from app.core.settings import settings
from app.db.session import Database
from app.models.user import User
from app.services.authz import seed_system_roles

logger = logging.getLogger(__name__)


async def seed(session: AsyncSession) -> None:
    """Create the system roles and the initial administrator if missing."""
    roles = await seed_system_roles(session)
    admin_role = roles[ADMIN_ROLE]

    stmt = select(User).where(User.email == settings.seed_admin_email.lower())
    user = (await session.execute(stmt)).scalar_one_or_none()
    if not user:
        logger.info("Creating admin user", extra={"email": settings.seed_admin_email})
        session.add(
            User(
                email=settings.seed_admin_email.lower(),
                hashed_password=get_password_hash(settings.seed_admin_password),
                full_name=settings.seed_admin_full_name,
                is_active=True,
                email_verified=True,
                role_id=admin_role.id,
                token_version=0,
            )
        )
    else:
        logger.info("Admin user already exists")
    await session.commit()


async def init_db(database: Database) -> None:
    async with database.sessionmaker() as session:
        await seed(session)


async def _main() -> None:
    database = Database.from_settings(settings)
    try:
        await init_db(database)
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(_main())
