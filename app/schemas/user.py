# ================================
# USER SCHEMAS (schemas/user.py)
# ================================

from pydantic import Field
from typing import Optional, Literal
from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin

UserRole = Literal["admin", "seller", "buyer", "broker"]

class UserBase(BaseSchema):
    """Base User Schema"""
    email: str = Field(..., max_length=255, description="User email address")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    phone: Optional[str] = Field(None, max_length=50)
    role: UserRole

class UserBasicInfo(BaseResponseSchema):
    """Basic user info with ID - used for seller/broker references"""
    name: str
    role: UserRole

class UserResponse(UserBase, BaseResponseSchema, TimestampMixin):
    """Schema für User-Responses"""
    is_active: bool
