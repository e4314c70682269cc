import logging
from datetime import date
from typing import Any, Dict, List, Optional

from core.errors import TodoNotFound, ValidationFailed
from db.models.todo import Todo
from db.stores.todo_store import SORT_ORDERS, TodoStore

logger = logging.getLogger(__name__)


class TodoService:
    """Todo operations for the authenticated user.

    ``user_id`` always comes from the auth guard; a todo owned by someone else
    is reported exactly like a missing one.
    """

    def __init__(self, todos: TodoStore):
        self.todos = todos

    async def create(self, user_id: int, title: str, due_date: Optional[date] = None, priority: int = 0) -> Todo:
        todo = await self.todos.create(user_id, title, due_date, priority)
        logger.info(f"Created todo id={todo.id}")
        return todo

    async def get(self, user_id: int, todo_id: int) -> Todo:
        todo = await self.todos.get(user_id, todo_id)
        if todo is None:
            raise TodoNotFound()
        return todo

    async def list(self, user_id: int, sort: str = "") -> List[Todo]:
        if sort not in SORT_ORDERS:
            raise ValidationFailed({"sort": "並び替えの指定が正しくありません"})
        return await self.todos.list(user_id, sort)

    async def update(self, user_id: int, todo_id: int, changes: Dict[str, Any]) -> Todo:
        todo = await self.todos.update(user_id, todo_id, changes)
        if todo is None:
            raise TodoNotFound()
        return todo

    async def toggle(self, user_id: int, todo_id: int) -> Todo:
        todo = await self.todos.toggle(user_id, todo_id)
        if todo is None:
            raise TodoNotFound()
        return todo

    async def delete(self, user_id: int, todo_id: int) -> None:
        if not await self.todos.delete(user_id, todo_id):
            raise TodoNotFound()
        logger.info(f"Deleted todo id={todo_id}")
