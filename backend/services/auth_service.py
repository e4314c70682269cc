"""Authentication service: registration, login, token refresh, logout, profile updates.

This is the only auth component the HTTP layer talks to. It owns no mutable
in-process state; everything shared lives in the three stores.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.errors import (
    AppError,
    CurrentPasswordIncorrect,
    EmailExists,
    InvalidCredentials,
    RefreshInvalid,
    TokenIssuanceFailed,
    UserNotFound,
    UsernameExists,
)
from core.security import AccessTokenCodec, PasswordHasher, new_token_id
from db.models.user import User
from db.stores.blacklist_store import BlacklistStore
from db.stores.refresh_token_store import RefreshTokenStore
from db.stores.user_store import UserStore
from utils.timing import timeit, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    # set by login so callers need no second lookup
    user: Optional[User] = None


class AuthService:
    def __init__(
        self,
        users: UserStore,
        blacklist: BlacklistStore,
        refresh_tokens: RefreshTokenStore,
        codec: AccessTokenCodec,
        hasher: PasswordHasher,
        refresh_lifetime: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
        token_ids: Callable[[], str] = new_token_id,
    ):
        self.users = users
        self.blacklist = blacklist
        self.refresh_tokens = refresh_tokens
        self.codec = codec
        self.hasher = hasher
        self._refresh_lifetime = refresh_lifetime
        self._clock = clock
        self._token_ids = token_ids

    @timeit("auth.register")
    async def register(self, username: str, email: str, password: str) -> User:
        # Fast-path checks; the unique constraints in the user store are the real guard.
        if await self.users.get_by_username(username) is not None:
            raise UsernameExists()
        if await self.users.get_by_email(email) is not None:
            raise EmailExists()

        password_hash = await self.hasher.hash(password)
        user = await self.users.create(username, email, password_hash)
        logger.info(f"Registered user id={user.id}")
        return user

    @timeit("auth.login")
    async def login(self, username: str, password: str) -> TokenPair:
        user = await self.users.get_by_username(username)
        if user is None or not await self.hasher.verify(password, user.password_hash):
            logger.info("Login rejected: invalid credentials")
            raise InvalidCredentials()

        refresh_token = await self._issue_refresh_token(user.id)
        try:
            access_token = self.codec.issue(user.id, user.username)
        except TokenIssuanceFailed:
            # Do not leave a usable refresh handle behind for a failed login.
            await self.refresh_tokens.revoke(refresh_token)
            raise
        logger.info(f"Login succeeded for user id={user.id}")
        return TokenPair(access_token=access_token, refresh_token=refresh_token, user=user)

    async def validate(self, access_token: str) -> int:
        claims = await self.codec.validate(access_token)
        return claims.user_id

    async def logout(self, access_token: str) -> None:
        """Blacklist the token's jti until its natural expiry. Idempotent.

        An expired but genuinely signed token is accepted so that a repeated
        logout still succeeds; refresh tokens are left untouched.
        """
        claims = self.codec.parse_for_logout(access_token)
        expires_at = datetime.fromtimestamp(claims.exp, tz=timezone.utc)
        await self.blacklist.add(claims.jti, expires_at)
        logger.info(f"Access token {claims.jti} revoked for user id={claims.user_id}")

    @timeit("auth.refresh")
    async def refresh(self, refresh_token: str) -> TokenPair:
        user_id, valid = await self.refresh_tokens.lookup(refresh_token)
        if not valid:
            raise RefreshInvalid()

        user = await self.users.get_by_id(user_id)
        if user is None:
            raise RefreshInvalid()

        # Rotation: only the caller whose conditional revoke lands may proceed.
        if not await self.refresh_tokens.revoke_if_active(refresh_token):
            logger.warning(f"Refresh token reuse or race detected for user id={user_id}")
            raise RefreshInvalid()

        access_token = self.codec.issue(user.id, user.username)
        try:
            new_refresh_token = await self._issue_refresh_token(user.id)
        except AppError as e:
            # The old token is already revoked: the session is lost and the user must log in again.
            logger.error(f"Refresh rotation failed after revoke for user id={user_id}: {e.code}")
            raise TokenIssuanceFailed() from e
        return TokenPair(access_token=access_token, refresh_token=new_refresh_token)

    async def get_user(self, user_id: int) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    @timeit("auth.update_profile")
    async def update_profile(
        self,
        user_id: int,
        new_username: str,
        new_email: str,
        current_password: str = "",
        new_password: str = "",
    ) -> User:
        """Update username/email and optionally the password.

        Existing access and refresh tokens stay valid after a password change;
        callers wanting to end other sessions use ``revoke_all_sessions``.
        """
        user = await self.get_user(user_id)

        if new_username != user.username:
            holder = await self.users.get_by_username(new_username)
            if holder is not None and holder.id != user_id:
                raise UsernameExists()
        if new_email != user.email:
            holder = await self.users.get_by_email(new_email)
            if holder is not None and holder.id != user_id:
                raise EmailExists()

        password_hash = user.password_hash
        if new_password:
            if not await self.hasher.verify(current_password, user.password_hash):
                raise CurrentPasswordIncorrect()
            password_hash = await self.hasher.hash(new_password)

        updated = await self.users.update(user_id, new_username, new_email, password_hash)
        logger.info(f"Profile updated for user id={user_id}")
        return updated

    async def revoke_refresh_token(self, refresh_token: str) -> None:
        """End a single session; unknown or already revoked tokens are ignored."""
        await self.refresh_tokens.revoke(refresh_token)

    async def revoke_all_sessions(self, user_id: int, access_token: Optional[str] = None) -> int:
        """Revoke every refresh token of the user and, if given, blacklist the current access token."""
        revoked = await self.refresh_tokens.revoke_all(user_id)
        if access_token:
            await self.logout(access_token)
        logger.info(f"Revoked {revoked} refresh tokens for user id={user_id}")
        return revoked

    async def _issue_refresh_token(self, user_id: int) -> str:
        token_id = self._token_ids()
        expires_at = self._clock() + self._refresh_lifetime
        try:
            await self.refresh_tokens.store(token_id, user_id, expires_at)
        except AppError as e:
            raise TokenIssuanceFailed() from e
        return token_id
