from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_auth_service, get_current_user_id, get_guard, get_settings, AuthGuard
from core.config import Settings
from core.errors import ValidationFailed
from schemas.user_schema import LoginResponse, RefreshRequest, RegisterResponse, Token, User, UserCreate, UserLogin
from services.auth_service import AuthService
from utils.responses import clear_auth_cookies, no_store_json, set_auth_cookies

router = APIRouter()


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(payload: UserCreate, auth_service: AuthService = Depends(get_auth_service)):
    user = await auth_service.register(payload.username, payload.email, payload.password)
    return no_store_json(RegisterResponse.model_validate(user).model_dump(), status_code=201)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: UserLogin,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    tokens = await auth_service.login(payload.username, payload.password)
    body = LoginResponse(user=User.model_validate(tokens.user))
    response = no_store_json(body.model_dump())
    return set_auth_cookies(response, settings, tokens.access_token, tokens.refresh_token)


@router.post("/refresh", response_model=Token)
async def refresh(
    request: Request,
    payload: Optional[RefreshRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    refresh_token = (payload.refresh_token if payload else None) or request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not refresh_token:
        raise ValidationFailed({"refresh_token": "リフレッシュトークンは必須です"})
    tokens = await auth_service.refresh(refresh_token)
    body = Token(access_token=tokens.access_token, refresh_token=tokens.refresh_token)
    response = no_store_json(body.model_dump())
    return set_auth_cookies(response, settings, tokens.access_token, tokens.refresh_token)


@router.post("/logout")
async def logout(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    guard: AuthGuard = Depends(get_guard),
    settings: Settings = Depends(get_settings),
):
    token = guard.token_from(request)
    if not token:
        raise ValidationFailed({"token": "トークンが必要です"})
    await auth_service.logout(token)
    refresh_token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if refresh_token:
        await auth_service.revoke_refresh_token(refresh_token)
    response = no_store_json({"message": "Logout successful"})
    return clear_auth_cookies(response, settings)


@router.post("/logout/all")
async def logout_all(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
    guard: AuthGuard = Depends(get_guard),
    settings: Settings = Depends(get_settings),
):
    revoked = await auth_service.revoke_all_sessions(user_id, access_token=guard.token_from(request))
    response = no_store_json({"message": "All sessions revoked", "revoked_sessions": revoked})
    return clear_auth_cookies(response, settings)
