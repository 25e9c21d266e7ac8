"""Database configuration and session management."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from fastapi import Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from barback.core.errors import StoreUnavailableError
from barback.core.logging import get_logger

logger = get_logger(__name__)


def normalize_database_url(url: str) -> str:
    """Map plain postgres URLs onto the asyncpg driver."""
    # Hosted Postgres provides postgres:// or postgresql:// but asyncpg needs postgresql+asyncpg://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if not url:
        return "postgresql+asyncpg://barback:dev_password_change_in_prod@db:5432/barback_dev"
    return url


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", ""))

# Declarative base
Base = declarative_base()


def create_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create the async engine for the given URL."""
    return create_async_engine(url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by every coordinator."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Translate driver/ORM failures into StoreUnavailableError.

    IntegrityError passes through untouched: callers use it as the signal
    for uniqueness violations.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("store.operation_failed", operation=operation, error=str(exc))
        raise StoreUnavailableError(
            f"Store unavailable during {operation}",
            details={"operation": operation, "error": type(exc).__name__},
        ) from exc
    except OSError as exc:
        logger.error("store.connection_failed", operation=operation, error=str(exc))
        raise StoreUnavailableError(
            f"Store unavailable during {operation}",
            details={"operation": operation, "error": type(exc).__name__},
        ) from exc


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
