import json
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Literal, Protocol

from jose import JWTError, jwt, jws
from jose.exceptions import JWSError
from passlib.context import CryptContext
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from core.errors import (
    PasswordHashFailed,
    TokenClaimsInvalid,
    TokenExpired,
    TokenIssuanceFailed,
    TokenMalformed,
    TokenRevoked,
    TokenSignatureInvalid,
)
from utils.timing import utcnow

logger = logging.getLogger(__name__)

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
TOKEN_ID_BYTES = 16
# bcrypt only reads this many bytes of input
MAX_PASSWORD_BYTES = 72


def new_token_id() -> str:
    """Return 16 bytes from the OS CSPRNG as 32 lowercase hex characters."""
    try:
        return secrets.token_hex(TOKEN_ID_BYTES)
    except (OSError, NotImplementedError) as e:
        logger.error(f"Entropy source failure while generating token id: {e}")
        raise TokenIssuanceFailed() from e


class PasswordHasher:
    """bcrypt hashing via passlib, executed off the event loop."""

    def __init__(self, rounds: int = 10):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    @staticmethod
    def too_long(password: str) -> bool:
        return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES

    async def hash(self, password: str) -> str:
        if self.too_long(password):
            logger.warning("Refusing to hash a password longer than bcrypt accepts")
            raise PasswordHashFailed()
        try:
            return await run_in_threadpool(self._context.hash, password)
        except Exception as e:
            logger.error(f"Password hashing failed: {type(e).__name__}")
            raise PasswordHashFailed() from e

    async def verify(self, password: str, password_hash: str) -> bool:
        """Constant-time comparison done by bcrypt; an unreadable stored hash never matches.

        Passwords bcrypt would truncate never match either.
        """
        if self.too_long(password):
            return False
        try:
            return await run_in_threadpool(self._context.verify, password, password_hash)
        except (ValueError, TypeError) as e:
            logger.warning(f"Stored password hash could not be verified: {e}")
            return False


class AccessTokenClaims(BaseModel):
    jti: str = Field(min_length=1)
    user_id: int = Field(ge=0)
    username: str
    type: Literal["access"]
    iat: int
    exp: int

    class Config:
        extra = "forbid"
        strict = True


class RevocationList(Protocol):
    async def contains(self, token_id: str) -> bool: ...


class AccessTokenCodec:
    """Issues and verifies short-lived HMAC-signed access tokens."""

    def __init__(
        self,
        secret: str,
        blacklist: RevocationList,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
        token_ids: Callable[[], str] = new_token_id,
    ):
        if algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._blacklist = blacklist
        self._algorithm = algorithm
        self._lifetime = int(lifetime.total_seconds())
        self._clock = clock
        self._token_ids = token_ids

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime

    def issue(self, user_id: int, username: str) -> str:
        iat = int(self._clock().timestamp())
        claims = AccessTokenClaims(
            jti=self._token_ids(),
            user_id=user_id,
            username=username,
            type="access",
            iat=iat,
            exp=iat + self._lifetime,
        )
        try:
            return jwt.encode(claims.model_dump(), self._secret, algorithm=self._algorithm)
        except JWTError as e:
            raise TokenIssuanceFailed() from e

    def decode(self, token: str, allow_expired: bool = False) -> AccessTokenClaims:
        """Verify signature and shape; no blacklist lookup."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise TokenMalformed() from e
        if header.get("alg") not in HMAC_ALGORITHMS:
            raise TokenSignatureInvalid()

        try:
            payload = jws.verify(token, self._secret, algorithms=list(HMAC_ALGORITHMS))
        except JWSError as e:
            raise TokenSignatureInvalid() from e

        try:
            raw = json.loads(payload)
        except ValueError as e:
            raise TokenMalformed() from e
        if not isinstance(raw, dict):
            raise TokenMalformed()

        try:
            claims = AccessTokenClaims.model_validate(raw)
        except ValidationError as e:
            raise TokenClaimsInvalid() from e

        if not allow_expired and claims.exp <= int(self._clock().timestamp()):
            raise TokenExpired()
        return claims

    async def validate(self, token: str) -> AccessTokenClaims:
        claims = self.decode(token)
        if await self._blacklist.contains(claims.jti):
            raise TokenRevoked()
        return claims

    def parse_for_logout(self, token: str) -> AccessTokenClaims:
        """Like ``decode`` but an expired, otherwise genuine token still yields its claims."""
        return self.decode(token, allow_expired=True)
