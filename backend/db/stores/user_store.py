import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import EmailExists, StorageError, UserNotFound, UsernameExists
from db.models.user import User
from utils.db import safe_commit, storage_errors

logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_by_id(self, user_id: int) -> Optional[User]:
        async with self._session_factory() as db, storage_errors("user lookup by id"):
            return await db.get(User, user_id)

    async def get_by_username(self, username: str) -> Optional[User]:
        async with self._session_factory() as db, storage_errors("user lookup by username"):
            result = await db.execute(select(User).where(User.username == username))
            return result.scalars().first()

    async def get_by_email(self, email: str) -> Optional[User]:
        async with self._session_factory() as db, storage_errors("user lookup by email"):
            result = await db.execute(select(User).where(User.email == email))
            return result.scalars().first()

    async def create(self, username: str, email: str, password_hash: str) -> User:
        """Insert a user; a uniqueness violation surfaces as ``UsernameExists``/``EmailExists``."""
        async with self._session_factory() as db, storage_errors("user create"):
            user = User(username=username, email=email, password_hash=password_hash)
            db.add(user)
            try:
                await safe_commit(db, "user create")
            except IntegrityError as e:
                await self._raise_conflict(db, username, email, exclude_id=None, cause=e)
            await db.refresh(user)
            return user

    async def update(self, user_id: int, username: str, email: str, password_hash: str) -> User:
        async with self._session_factory() as db, storage_errors("user update"):
            user = await db.get(User, user_id)
            if user is None:
                raise UserNotFound()
            user.username = username
            user.email = email
            user.password_hash = password_hash
            try:
                await safe_commit(db, "user update")
            except IntegrityError as e:
                await self._raise_conflict(db, username, email, exclude_id=user_id, cause=e)
            await db.refresh(user)
            return user

    async def _raise_conflict(
        self,
        db: AsyncSession,
        username: str,
        email: str,
        exclude_id: Optional[int],
        cause: IntegrityError,
    ):
        # The unique constraint is authoritative; re-read to tell which column collided.
        result = await db.execute(select(User.id).where(User.username == username))
        holder = result.scalar_one_or_none()
        if holder is not None and holder != exclude_id:
            raise UsernameExists() from cause
        result = await db.execute(select(User.id).where(User.email == email))
        holder = result.scalar_one_or_none()
        if holder is not None and holder != exclude_id:
            raise EmailExists() from cause
        logger.error(f"Unexpected integrity error on users table: {cause}")
        raise StorageError() from cause
