from typing import List

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_current_user_id, get_todo_service
from schemas.todo_schema import TodoCreate, TodoResponse, TodoUpdate
from services.todo_service import TodoService

router = APIRouter(prefix="/todos")


@router.get("", response_model=List[TodoResponse])
async def list_todos(
    sort: str = "",
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    return await todo_service.list(user_id, sort)


@router.post("", response_model=TodoResponse, status_code=201)
async def create_todo(
    payload: TodoCreate,
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    return await todo_service.create(user_id, payload.title, payload.due_date, payload.priority)


@router.get("/{todo_id}", response_model=TodoResponse)
async def get_todo(
    todo_id: int,
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    return await todo_service.get(user_id, todo_id)


@router.put("/{todo_id}", response_model=TodoResponse)
async def update_todo(
    todo_id: int,
    payload: TodoUpdate,
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    changes = payload.model_dump(exclude_unset=True)
    # due_date may be cleared with null; the other columns are NOT NULL
    changes = {k: v for k, v in changes.items() if v is not None or k == "due_date"}
    return await todo_service.update(user_id, todo_id, changes)


@router.delete("/{todo_id}", status_code=204)
async def delete_todo(
    todo_id: int,
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    await todo_service.delete(user_id, todo_id)
    return Response(status_code=204)


@router.patch("/{todo_id}/toggle", response_model=TodoResponse)
async def toggle_todo(
    todo_id: int,
    user_id: int = Depends(get_current_user_id),
    todo_service: TodoService = Depends(get_todo_service),
):
    return await todo_service.toggle(user_id, todo_id)
