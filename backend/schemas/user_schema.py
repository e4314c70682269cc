import re
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError
from typing import Any, Optional

from core.security import MAX_PASSWORD_BYTES

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9_]+")
CURRENT_PASSWORD_REQUIRED = "現在のパスワードを入力してください"


def _field_error(message: str) -> PydanticCustomError:
    return PydanticCustomError("field_rule", message)


def check_username(value: str) -> str:
    if not value:
        raise _field_error("ユーザー名は必須です")
    if len(value) < 3 or len(value) > 20:
        raise _field_error("ユーザー名は3-20文字で入力してください")
    if not USERNAME_PATTERN.fullmatch(value):
        raise _field_error("ユーザー名は英数字とアンダースコアのみ使用できます")
    return value


def check_email(value: str) -> str:
    if not value:
        raise _field_error("メールアドレスは必須です")
    local, at, domain = value.partition("@")
    # exactly one '@', something on both sides, and a '.' in the domain that is not its last character
    if not at or not local or not domain or "@" in domain or "." not in domain[:-1]:
        raise _field_error("有効なメールアドレスを入力してください")
    return value


def check_new_password(value: str, required_message: str = "パスワードは必須です") -> str:
    if not value:
        raise _field_error(required_message)
    if len(value) < 8:
        raise _field_error("パスワードは8文字以上で入力してください")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise _field_error(f"パスワードは{MAX_PASSWORD_BYTES}バイト以内で入力してください")
    has_letter = any(("a" <= ch <= "z") or ("A" <= ch <= "Z") for ch in value)
    has_digit = any("0" <= ch <= "9" for ch in value)
    if not (has_letter and has_digit):
        raise _field_error("パスワードは英数字の両方を含む必要があります")
    return value


class UserCreate(BaseModel):
    username: str = Field("", validate_default=True)
    email: str = Field("", validate_default=True)
    password: str = Field("", validate_default=True)

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return check_new_password(v)


class UserLogin(BaseModel):
    username: str = Field("", validate_default=True)
    password: str = Field("", validate_default=True)

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        if not v:
            raise _field_error("ユーザー名は必須です")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if not v:
            raise _field_error("パスワードは必須です")
        return v


class UserUpdate(BaseModel):
    username: str = Field("", validate_default=True)
    email: str = Field("", validate_default=True)
    current_password: str = ""
    new_password: str = ""

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("new_password")
    @classmethod
    def _new_password(cls, v: str) -> str:
        if v:
            check_new_password(v)
        return v

    @model_validator(mode="wrap")
    @classmethod
    def _current_password_required(cls, data: Any, handler):
        """Reported alongside the field errors, even when new_password itself is rejected."""
        errors = []
        model = None
        try:
            model = handler(data)
        except ValidationError as e:
            errors = [_line_error(err) for err in e.errors()]
        if isinstance(data, dict) and data.get("new_password") and not data.get("current_password"):
            errors.append({
                "type": _field_error(CURRENT_PASSWORD_REQUIRED),
                "loc": ("current_password",),
                "input": data.get("current_password", ""),
            })
        if errors:
            raise ValidationError.from_exception_data(cls.__name__, errors)
        return model


def _line_error(err: dict) -> dict:
    """Turn an entry of ``ValidationError.errors()`` back into raisable line-error details."""
    error_type = err["type"]
    if error_type == "field_rule":
        error_type = _field_error(err["msg"])
    details = {"type": error_type, "loc": err["loc"], "input": err.get("input")}
    if "ctx" in err and not isinstance(error_type, PydanticCustomError):
        details["ctx"] = err["ctx"]
    return details


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class User(BaseModel):
    id: int
    username: str
    email: str

    class Config:
        from_attributes = True
        extra = "ignore"


class RegisterResponse(User):
    message: str = "User created successfully"


class LoginResponse(BaseModel):
    user: User
    message: str = "Login successful"


class UpdateProfileResponse(BaseModel):
    user: User
    message: str = "Profile updated successfully"


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    refresh_token: str
