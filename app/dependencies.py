# ================================
# DEPENDENCIES (dependencies.py)
# ================================

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional, Callable
import uuid

from app.models.user import User
from app.core.security import verify_token
from app.core.exceptions import AuthenticationError, AuthorizationError

security = HTTPBearer(auto_error=False)

# ================================
# BASIC DEPENDENCIES
# ================================

def get_db(request: Request) -> Session:
    """Dependency für Database Session aus Middleware"""
    return request.state.db

# ================================
# USER AUTHENTICATION DEPENDENCIES
# ================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Dependency für aktuellen User"""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        raise AuthenticationError("Invalid token payload")

    user = db.get(User, user_uuid)
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    return user

# ================================
# ROLE-BASED DEPENDENCIES
# ================================

def require_role(*roles: str) -> Callable:
    """Factory für Role-basierte Dependencies; returns the current user"""

    async def role_dependency(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(f"Role required: {' or '.join(roles)}")
        return current_user

    return role_dependency

get_admin_user = require_role("admin")
get_buyer_user = require_role("buyer")
get_broker_user = require_role("broker")

# ================================
# PAGINATION DEPENDENCIES
# ================================

def get_pagination_params(
    page: int = 1,
    page_size: int = 20
) -> tuple[int, int]:
    """Dependency für Pagination Parameter"""
    if page < 1:
        page = 1
    if page_size < 1 or page_size > 100:
        page_size = 20

    return page, page_size
