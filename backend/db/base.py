from db.session import Base
from db.models.user import User  # noqa: F401
from db.models.refresh_token import RefreshToken  # noqa: F401
from db.models.token_blacklist import TokenBlacklist  # noqa: F401
from db.models.todo import Todo  # noqa: F401
import logging
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


async def initialize_database(engine: AsyncEngine):
    """Create tables only. Production schemas are expected to be migrated out of band."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise
