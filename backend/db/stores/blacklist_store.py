import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models.token_blacklist import TokenBlacklist
from utils.db import safe_commit, storage_errors
from utils.timing import utcnow

logger = logging.getLogger(__name__)


class BlacklistStore:
    """Revoked access-token ids; an entry only counts while ``expires_at > now``."""

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def add(self, token_id: str, expires_at: datetime) -> None:
        """Insert ``(token_id, expires_at)``; a second insert of the same id is a no-op."""
        async with self._session_factory() as db, storage_errors("blacklist add"):
            db.add(TokenBlacklist(token_id=token_id, expires_at=expires_at))
            try:
                await safe_commit(db, "blacklist add")
            except IntegrityError:
                logger.debug(f"Token {token_id} already blacklisted")

    async def contains(self, token_id: str) -> bool:
        async with self._session_factory() as db, storage_errors("blacklist lookup"):
            result = await db.execute(
                select(TokenBlacklist.token_id).where(
                    TokenBlacklist.token_id == token_id,
                    TokenBlacklist.expires_at > self._clock(),
                )
            )
            return result.scalar_one_or_none() is not None

    async def gc(self) -> int:
        """Delete entries whose token has expired. Returns the number removed."""
        async with self._session_factory() as db, storage_errors("blacklist gc"):
            result = await db.execute(
                delete(TokenBlacklist)
                .where(TokenBlacklist.expires_at <= self._clock())
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "blacklist gc")
            return result.rowcount or 0
