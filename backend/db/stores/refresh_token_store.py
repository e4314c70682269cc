import logging
from datetime import datetime
from typing import Callable, Tuple

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models.refresh_token import RefreshToken
from utils.db import safe_commit, storage_errors
from utils.timing import as_utc, utcnow

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """Server-side refresh-token records. A record is usable iff not revoked and ``now < expires_at``."""

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def store(self, token_id: str, user_id: int, expires_at: datetime) -> None:
        async with self._session_factory() as db, storage_errors("refresh token store"):
            db.add(RefreshToken(token_id=token_id, user_id=user_id, expires_at=expires_at, is_revoked=False))
            await safe_commit(db, "refresh token store")

    async def lookup(self, token_id: str) -> Tuple[int, bool]:
        """Return ``(user_id, True)`` for a usable token, ``(0, False)`` otherwise."""
        async with self._session_factory() as db, storage_errors("refresh token lookup"):
            result = await db.execute(select(RefreshToken).where(RefreshToken.token_id == token_id))
            record = result.scalars().first()
        if record is None:
            return 0, False
        if record.is_revoked or self._clock() >= as_utc(record.expires_at):
            return 0, False
        return record.user_id, True

    async def revoke(self, token_id: str) -> None:
        async with self._session_factory() as db, storage_errors("refresh token revoke"):
            await db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_id == token_id)
                .values(is_revoked=True)
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "refresh token revoke")

    async def revoke_if_active(self, token_id: str) -> bool:
        """Atomically revoke a still-usable token.

        Returns False when the row is missing, already revoked or expired, so of
        two concurrent callers presenting the same token exactly one gets True.
        """
        async with self._session_factory() as db, storage_errors("refresh token rotate"):
            result = await db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_id == token_id,
                    RefreshToken.is_revoked.is_(False),
                    RefreshToken.expires_at > self._clock(),
                )
                .values(is_revoked=True)
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "refresh token rotate")
            return result.rowcount == 1

    async def revoke_all(self, user_id: int) -> int:
        async with self._session_factory() as db, storage_errors("refresh token revoke all"):
            result = await db.execute(
                update(RefreshToken)
                .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
                .values(is_revoked=True)
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "refresh token revoke all")
            return result.rowcount or 0

    async def gc(self) -> int:
        """Delete every expired or revoked record. Returns the number removed."""
        async with self._session_factory() as db, storage_errors("refresh token gc"):
            result = await db.execute(
                delete(RefreshToken)
                .where(or_(RefreshToken.expires_at <= self._clock(), RefreshToken.is_revoked.is_(True)))
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "refresh token gc")
            return result.rowcount or 0
