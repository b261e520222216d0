"""
Database engine, session management, and base model class.

SQLAlchemy 2.0 with async support:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request
  - get_session_factory(): FastAPI dependency handing the session factory to
    components that manage their own units of work (the Transfer Engine,
    the notification dispatcher)

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits on
  success and rolls back on unexpected exceptions. Domain errors still
  commit, so audit rows written before the error (rejected movements,
  operator alerts) are persisted.
"""

import enum

from fastapi import Depends
from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from bankcore.config import settings
from bankcore.exceptions import BankAPIError


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# expire_on_commit=False keeps attributes readable after commit; a lazy
# refresh would need a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


def enum_column(enum_cls: type[enum.Enum]) -> Enum:
    """
    Column type for a str-valued Python enum.

    Stores the enum *values* ("checking", "frozen") rather than member names,
    as a VARCHAR with a CHECK constraint, so raw SQL constraints can refer to
    them.
    """
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency returning the application's session factory.

    Tests override this one dependency to point every session, including
    the ones the Transfer Engine opens itself, at a test database.
    """
    return AsyncSessionLocal


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except BankAPIError:
            # A failed flush leaves nothing to keep
            if session.is_active:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise
