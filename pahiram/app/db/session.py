"""
Async database connection management via SQLAlchemy.

The engine and session factory live on the application state (see
app.main) so tests can swap in an in-memory database.
"""

import logging
from typing import AsyncIterator, Iterable

from fastapi import Request
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base, Role

logger = logging.getLogger(__name__)

# Roles known to the borrowing system; only the name is needed here
DEFAULT_ROLES = (
    ("BORROWER", "Default role for students and employees"),
    ("COORDINATOR", "Approves borrow requests of an office"),
    ("SUPERVISOR", "Manages an office's inventory"),
    ("ADMIN", "System administrator"),
)


def create_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """
    Create the async engine.

    SQLite gets explicit BEGIN handling so SAVEPOINTs nest inside the
    session transaction instead of committing it, and foreign keys are
    enforced.
    """
    engine = create_async_engine(database_url, echo=echo, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    roles: Iterable[tuple] = DEFAULT_ROLES,
) -> None:
    """Create all tables if missing and seed the roles lookup table."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        result = await session.execute(select(Role.role))
        existing = set(result.scalars().all())
        missing = [Role(role=name, description=desc) for name, desc in roles if name not in existing]
        if missing:
            session.add_all(missing)
            await session.commit()
            logger.info("Seeded roles table", extra={"roles": [r.role for r in missing]})


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    session_factory = request.app.state.app_state.session_factory
    async with session_factory() as session:
        yield session
