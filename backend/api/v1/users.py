from fastapi import APIRouter, Depends

from api.dependencies import get_auth_service, get_current_user_id
from schemas.user_schema import UpdateProfileResponse, User, UserUpdate
from services.auth_service import AuthService
from utils.responses import no_store_json

router = APIRouter()


@router.get("/me", response_model=User)
async def read_users_me(
    user_id: int = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = await auth_service.get_user(user_id)
    return no_store_json(User.model_validate(user).model_dump())


@router.put("/profile", response_model=UpdateProfileResponse)
async def update_profile(
    payload: UserUpdate,
    user_id: int = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = await auth_service.update_profile(
        user_id,
        payload.username,
        payload.email,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return no_store_json(UpdateProfileResponse(user=User.model_validate(user)).model_dump())
