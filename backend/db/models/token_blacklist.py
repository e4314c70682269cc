from sqlalchemy import Column, String, DateTime
from db.session import Base
from utils.timing import utcnow


class TokenBlacklist(Base):
    """Revoked access-token ids, kept until the token would have expired anyway."""

    __tablename__ = "token_blacklist"

    token_id = Column(String(64), primary_key=True)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
