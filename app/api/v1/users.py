# ================================
# USER API ROUTES (api/v1/users.py)
# ================================

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.user import UserResponse

router = APIRouter()

@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Currently authenticated user"""
    return UserResponse.model_validate(current_user)
