# ================================
# CART SCHEMAS (schemas/cart.py)
# ================================

from typing import Optional, List, Literal
from datetime import datetime
from pydantic import Field
import uuid

from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin

ConfirmationMethod = Literal["otp", "qr", "manual", "scheduled"]
VisitType = Literal["in_person", "virtual", "broker_accompanied"]
ReleaseReason = Literal["removed", "expired"]

class ReserveRequest(BaseSchema):
    """Add a property to the buyer's cart"""
    property_id: uuid.UUID

class ScheduleVisitRequest(BaseSchema):
    scheduled_date: datetime
    scheduled_time: Optional[str] = Field(None, max_length=20, description="e.g. '10:30'")
    visit_type: VisitType = "in_person"
    phone_number: Optional[str] = Field(None, max_length=50)
    special_requests: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)

class ConfirmVisitRequest(BaseSchema):
    method: ConfirmationMethod = "manual"
    notes: Optional[str] = Field(None, max_length=2000)

class AdminReleaseRequest(BaseSchema):
    reason: ReleaseReason = "removed"
    note: Optional[str] = Field(None, max_length=2000)

class CartItemResponse(BaseResponseSchema, TimestampMixin):
    """A single reservation"""
    cart_id: uuid.UUID
    buyer_id: uuid.UUID
    property_id: uuid.UUID

    status: str
    visit_status: str
    reserved_at: datetime

    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    visit_type: Optional[str] = None
    phone_number: Optional[str] = None
    special_requests: Optional[str] = None
    notes: Optional[str] = None

    visit_confirmed_at: Optional[datetime] = None
    confirmed_by_id: Optional[uuid.UUID] = None
    confirmed_by_role: Optional[str] = None
    confirmation_method: Optional[str] = None

    booking_window_start: Optional[datetime] = None
    booking_window_end: Optional[datetime] = None

    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None

    # Derived
    visit_deadline: Optional[datetime] = None

class CartResponse(BaseSchema):
    """Buyer's cart with active reservations"""
    buyer_id: uuid.UUID
    max_properties: int
    visit_window_days: int
    booking_window_days: int
    active_count: int
    items: List[CartItemResponse]
