# ================================
# NOTIFICATION API ROUTES (api/v1/notifications.py)
# ================================

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
import uuid

from app.dependencies import get_db, get_current_user
from app.models.user import User
from app.services.notification_service import NotificationService
from app.schemas.base import SuccessResponse
from app.schemas.notification import NotificationResponse, NotificationListResponse

router = APIRouter()

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    items, unread = NotificationService.list_notifications(
        db, current_user.id, unread_only=unread_only, skip=skip, limit=limit
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        unread_count=unread
    )

@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    notification = NotificationService.mark_as_read(db, notification_id, current_user.id)
    return NotificationResponse.model_validate(notification)

@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_as_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    updated = NotificationService.mark_all_as_read(db, current_user.id)
    return SuccessResponse(message=f"{updated} notifications marked as read", data={"updated": updated})
