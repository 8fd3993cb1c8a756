# ================================
# NOTIFICATION SCHEMAS (schemas/notification.py)
# ================================

from typing import Optional, Dict, Any, List, Literal
from datetime import datetime
from pydantic import Field
import uuid

from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin

EventType = Literal["PropertyLocked", "VisitConfirmed", "PropertyUnlocked"]

class ReservationEvent(BaseSchema):
    """Event emitted by the reservation engine after a committed transition"""
    type: EventType
    property_id: uuid.UUID
    property_title: str
    reservation_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    broker_id: Optional[uuid.UUID] = None
    occurred_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)

class NotificationResponse(BaseResponseSchema, TimestampMixin):
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    priority: str
    is_read: bool
    read_at: Optional[datetime] = None

class NotificationListResponse(BaseSchema):
    items: List[NotificationResponse]
    unread_count: int
