import contextlib
import logging
from collections.abc import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from twofactor.config import settings
from twofactor.exceptions import PersistenceUnavailableError

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    # SQLite drivers do not accept pool sizing arguments
    if settings.database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": settings.db_timeout_seconds}}
    if settings.environment == "production":
        return {
            "pool_size": 20,
            "max_overflow": 50,
            "pool_timeout": settings.db_timeout_seconds,
            "pool_recycle": 1800,
        }
    return {
        "echo": settings.debug,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": settings.db_timeout_seconds,
    }


engine = create_async_engine(settings.database_url, **_engine_options())

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception as e:
            logger.error(f"Database session error: {e}")
            raise
        finally:
            try:
                await db.close()
            except Exception as close_error:
                logger.warning(f"Error closing database session: {close_error}")


def get_session_factory() -> async_sessionmaker:
    """Session factory used for writes that must not share the caller's transaction."""
    return AsyncSessionLocal


@contextlib.asynccontextmanager
async def persistence_guard(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Translate storage failures into PersistenceUnavailableError.

    The session is rolled back so the caller can keep using it. Storage
    errors are never retried here.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Persistence failure during {operation}: {e}")
        try:
            await db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.warning(f"Rollback after {operation} failed: {rollback_error}")
        raise PersistenceUnavailableError(operation=operation) from e
