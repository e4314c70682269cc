from datetime import date, datetime
from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, field_serializer
from pydantic_core import PydanticCustomError
from typing import Annotated, Optional

from utils.timing import as_utc

PRIORITY_LOW = 0
PRIORITY_MEDIUM = 1
PRIORITY_HIGH = 2


def _parse_due_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            pass
    raise PydanticCustomError(
        "field_rule", "日付の形式が正しくありません。YYYY-MM-DD形式で入力してください"
    )


def _check_title(value):
    if value is None or not value.strip():
        raise PydanticCustomError("field_rule", "タイトルは必須です")
    if len(value) > 100:
        raise PydanticCustomError("field_rule", "タイトルは100文字以内で入力してください")
    return value


def _check_priority(value):
    if value is None or value not in (PRIORITY_LOW, PRIORITY_MEDIUM, PRIORITY_HIGH):
        raise PydanticCustomError("field_rule", "優先度は0から2の範囲で指定してください")
    return value


Title = Annotated[Optional[str], AfterValidator(_check_title)]
Priority = Annotated[Optional[int], AfterValidator(_check_priority)]
DueDate = Annotated[Optional[date], BeforeValidator(_parse_due_date)]


class TodoCreate(BaseModel):
    title: Title = Field("", validate_default=True)
    due_date: DueDate = None
    priority: Priority = PRIORITY_LOW


class TodoUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    title: Title = None
    due_date: DueDate = None
    priority: Priority = None
    is_completed: Optional[bool] = None


class TodoResponse(BaseModel):
    id: int
    user_id: int
    title: str
    due_date: Optional[date] = None
    priority: int
    is_completed: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("created_at", "updated_at")
    def _timestamps(self, value: datetime) -> str:
        return as_utc(value).isoformat()
