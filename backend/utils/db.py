import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import StorageError

logger = logging.getLogger(__name__)


async def safe_commit(session, operation: str = "commit"):
    """Commit, rolling back on failure.

    ``IntegrityError`` is re-raised untouched so stores can map constraint
    violations to domain errors; every other driver failure becomes a
    ``StorageError`` whose driver message stays in the server log.
    """
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"{operation} failed: {e}")
        raise StorageError() from e


@asynccontextmanager
async def storage_errors(operation: str):
    """Wrap low-level persistence failures raised inside the block as ``StorageError``."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"{operation} failed: {e}")
        raise StorageError() from e
