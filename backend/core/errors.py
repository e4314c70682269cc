"""Application error taxonomy.

Every error raised by the auth core and the todo service is an ``AppError``
carrying a stable ``code``, a user-facing ``message`` and the HTTP status the
API layer should answer with. The exception handlers in ``main`` render them as
``{"code": ..., "message": ..., "details": ...}``.
"""
from typing import Any, Dict, Optional


class AppError(Exception):
    code: str = "INTERNAL_ERROR"
    message: str = "内部エラーが発生しました"
    status_code: int = 500

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        if message is not None:
            self.message = message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# Request errors
class ValidationFailed(AppError):
    code = "VALIDATION_FAILED"
    message = "バリデーションエラーです"
    status_code = 400

    def __init__(self, field_errors: Dict[str, str]):
        super().__init__(details=dict(field_errors))


class InvalidJSON(AppError):
    code = "INVALID_JSON"
    message = "無効なJSON形式です"
    status_code = 400


# Authentication errors
class InvalidCredentials(AppError):
    code = "INVALID_CREDENTIALS"
    message = "ユーザー名またはパスワードが正しくありません"
    status_code = 401


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    message = "認証が必要です"
    status_code = 401


class TokenError(AppError):
    """Base for access-token validation failures."""

    code = "TOKEN_INVALID"
    message = "無効なトークンです"
    status_code = 401


class TokenMalformed(TokenError):
    pass


class TokenSignatureInvalid(TokenError):
    pass


class TokenClaimsInvalid(TokenError):
    pass


class TokenExpired(TokenError):
    code = "TOKEN_EXPIRED"
    message = "トークンの有効期限が切れています"


class TokenRevoked(TokenError):
    code = "TOKEN_REVOKED"
    message = "トークンは無効化されています"


class RefreshInvalid(AppError):
    code = "REFRESH_INVALID"
    message = "リフレッシュトークンが無効です"
    status_code = 401


class CurrentPasswordIncorrect(AppError):
    code = "CURRENT_PASSWORD_INCORRECT"
    message = "現在のパスワードが正しくありません"
    status_code = 401

    def __init__(self):
        super().__init__(details={"current_password": self.message})


# Conflicts
class UsernameExists(AppError):
    code = "USERNAME_EXISTS"
    message = "このユーザー名は既に使用されています"
    status_code = 409

    def __init__(self):
        super().__init__(details={"username": self.message})


class EmailExists(AppError):
    code = "EMAIL_EXISTS"
    message = "このメールアドレスは既に登録されています"
    status_code = 409

    def __init__(self):
        super().__init__(details={"email": self.message})


# Lookups
class UserNotFound(AppError):
    code = "USER_NOT_FOUND"
    message = "ユーザーが見つかりません"
    status_code = 404


class TodoNotFound(AppError):
    code = "TODO_NOT_FOUND"
    message = "Todoが見つかりません"
    status_code = 404


# Server-side failures
class PasswordHashFailed(AppError):
    code = "PASSWORD_HASH_FAILED"
    message = "パスワードの暗号化に失敗しました"
    status_code = 500


class TokenIssuanceFailed(AppError):
    code = "TOKEN_ISSUANCE_FAILED"
    message = "トークンの発行に失敗しました"
    status_code = 500


class StorageError(AppError):
    code = "STORAGE_ERROR"
    message = "データベースエラーです"
    status_code = 500
