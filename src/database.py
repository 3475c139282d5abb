import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from models.relational_models import User
from settings import settings
from utilities.authentication import get_password_hash
from utilities.enumerables import UserRole


logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores ON DELETE rules unless the pragma is set per connection."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)
enable_sqlite_foreign_keys(async_engine)


async def create_db_and_tables(engine: AsyncEngine = async_engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def bootstrap_admin(engine: AsyncEngine = async_engine) -> None:
    """Create the default admin account when the database has no admin yet."""
    async with AsyncSession(engine) as session:
        result = await session.exec(select(User.id).where(User.role == UserRole.ADMIN).limit(1))
        if result.first() is not None:
            return

        session.add(
            User(
                username=settings.bootstrap_admin_username,
                email=settings.bootstrap_admin_email,
                department=settings.bootstrap_admin_department,
                role=UserRole.ADMIN,
                password=get_password_hash(settings.bootstrap_admin_password),
            )
        )
        await session.commit()
        logger.warning(
            "Default admin user created: %s; change its password", settings.bootstrap_admin_email
        )


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await create_db_and_tables()
    if settings.bootstrap_admin:
        await bootstrap_admin()
    logger.info("Database tables initialized")
    yield
    await async_engine.dispose()
