from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, Index
from db.session import Base
from utils.timing import utcnow


class Todo(Base):
    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(100), nullable=False)
    due_date = Column(Date, nullable=True)
    # 0 low, 1 medium, 2 high
    priority = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    __table_args__ = (
        Index("ix_todos_user_id_created_at", "user_id", "created_at"),
    )
