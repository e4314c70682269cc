from typing import Optional

from fastapi import Depends, Request

from core.config import Settings
from core.errors import AppError, Unauthorized
from services.auth_service import AuthService
from services.todo_service import TodoService
from utils.logging_config import user_id_var
import logging

logger = logging.getLogger(__name__)


def extract_access_token(request: Request, cookie_name: str) -> Optional[str]:
    """Cookie first, then ``Authorization: Bearer``."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get("authorization") or ""
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


class AuthGuard:
    """Resolves the caller's user id from the request's access token."""

    def __init__(self, auth_service: AuthService, cookie_name: str = "auth_token"):
        self.auth_service = auth_service
        self.cookie_name = cookie_name

    def token_from(self, request: Request) -> Optional[str]:
        return extract_access_token(request, self.cookie_name)

    async def require(self, request: Request) -> int:
        token = self.token_from(request)
        if not token:
            raise Unauthorized()
        try:
            user_id = await self.auth_service.validate(token)
        except AppError as e:
            logger.info(f"Access token rejected: {e.code}")
            raise
        request.state.auth_user_id = user_id
        user_id_var.set(str(user_id))
        return user_id

    async def optional(self, request: Request) -> Optional[int]:
        token = self.token_from(request)
        if not token:
            return None
        try:
            user_id = await self.auth_service.validate(token)
        except AppError:
            return None
        request.state.auth_user_id = user_id
        user_id_var.set(str(user_id))
        return user_id


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_todo_service(request: Request) -> TodoService:
    return request.app.state.todo_service


def get_guard(request: Request) -> AuthGuard:
    return request.app.state.guard


async def get_current_user_id(request: Request, guard: AuthGuard = Depends(get_guard)) -> int:
    return await guard.require(request)
