from fastapi import APIRouter

from mediagen.auth.schemas import UserResponse
from mediagen.core.dependencies import CurrentUser

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=UserResponse)
async def me(user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(user)
