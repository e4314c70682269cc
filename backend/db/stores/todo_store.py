from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models.todo import Todo
from utils.db import safe_commit, storage_errors

# Undated todos always sort after dated ones.
SORT_ORDERS = {
    "": (Todo.created_at.desc(), Todo.id.desc()),
    "due_date_asc": (Todo.due_date.is_(None), Todo.due_date.asc(), Todo.id.desc()),
    "due_date_desc": (Todo.due_date.is_(None), Todo.due_date.desc(), Todo.id.desc()),
    "priority_desc": (Todo.priority.desc(), Todo.created_at.desc(), Todo.id.desc()),
    "created_desc": (Todo.created_at.desc(), Todo.id.desc()),
}


class TodoStore:
    """Todo rows; every statement is filtered by the owning ``user_id``."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create(self, user_id: int, title: str, due_date: Optional[date], priority: int) -> Todo:
        async with self._session_factory() as db, storage_errors("todo create"):
            todo = Todo(user_id=user_id, title=title, due_date=due_date, priority=priority, is_completed=False)
            db.add(todo)
            await safe_commit(db, "todo create")
            await db.refresh(todo)
            return todo

    async def get(self, user_id: int, todo_id: int) -> Optional[Todo]:
        async with self._session_factory() as db, storage_errors("todo get"):
            result = await db.execute(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
            return result.scalars().first()

    async def list(self, user_id: int, sort: str = "") -> List[Todo]:
        async with self._session_factory() as db, storage_errors("todo list"):
            result = await db.execute(
                select(Todo).where(Todo.user_id == user_id).order_by(*SORT_ORDERS[sort])
            )
            return list(result.scalars().all())

    async def update(self, user_id: int, todo_id: int, changes: Dict[str, Any]) -> Optional[Todo]:
        async with self._session_factory() as db, storage_errors("todo update"):
            result = await db.execute(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
            todo = result.scalars().first()
            if todo is None:
                return None
            for field, value in changes.items():
                setattr(todo, field, value)
            await safe_commit(db, "todo update")
            await db.refresh(todo)
            return todo

    async def toggle(self, user_id: int, todo_id: int) -> Optional[Todo]:
        async with self._session_factory() as db, storage_errors("todo toggle"):
            result = await db.execute(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
            todo = result.scalars().first()
            if todo is None:
                return None
            todo.is_completed = not todo.is_completed
            await safe_commit(db, "todo toggle")
            await db.refresh(todo)
            return todo

    async def delete(self, user_id: int, todo_id: int) -> bool:
        async with self._session_factory() as db, storage_errors("todo delete"):
            result = await db.execute(
                delete(Todo)
                .where(Todo.id == todo_id, Todo.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            await safe_commit(db, "todo delete")
            return result.rowcount == 1
