# ================================
# PROPERTY SCHEMAS (schemas/property.py)
# ================================

from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal
from pydantic import Field
import uuid

from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin, PaginatedResponse

PropertyStatus = Literal[
    "draft", "pending_approval", "approved", "live",
    "rejected", "suspended", "sold", "rented", "expired"
]

# Listing details a seller may be allowed to change after review
EditableField = Literal["title", "description", "property_type", "city", "price"]

class PropertyBase(BaseSchema):
    """Base property schema"""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    property_type: Optional[str] = Field(None, max_length=50)
    city: Optional[str] = Field(None, max_length=255)
    price: Decimal = Field(..., gt=0, decimal_places=2)

class PropertyCreate(PropertyBase):
    """Schema for creating a property (seller or broker)"""
    seller_id: Optional[uuid.UUID] = Field(None, description="Required when a broker lists on behalf of a seller")
    broker_id: Optional[uuid.UUID] = Field(None, description="Assigned broker; defaults to the listing broker")
    adder_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    seller_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    submit_for_approval: bool = Field(True, description="Submit immediately instead of saving a draft")

class PropertyUpdate(BaseSchema):
    """Schema for updating listing details"""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    property_type: Optional[str] = Field(None, max_length=50)
    city: Optional[str] = Field(None, max_length=255)
    price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)

class PropertyApprove(BaseSchema):
    go_live: bool = Field(False, description="Publish immediately after approval")
    notes: Optional[str] = None

class EditPermissionGrant(BaseSchema):
    """Admin grant of a time-boxed edit window on a reviewed listing"""
    allowed_fields: List[EditableField] = Field(..., min_length=1)
    duration_hours: int = Field(24, gt=0, le=720)
    reason: Optional[str] = Field(None, max_length=500)

class EditPermissionResponse(BaseSchema):
    enabled: bool
    allowed_fields: List[str] = []
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    reason: Optional[str] = None
    granted_by: Optional[uuid.UUID] = None

class CartLockResponse(BaseSchema):
    """Denormalized cart lock as exposed to clients"""
    held: bool
    holder_id: Optional[uuid.UUID] = None
    reservation_id: Optional[uuid.UUID] = None
    reserved_at: Optional[datetime] = None
    visit_confirmed: bool = False
    visit_confirmed_at: Optional[datetime] = None
    confirmed_by_id: Optional[uuid.UUID] = None
    confirmed_by_role: Optional[str] = None
    confirmation_method: Optional[str] = None
    booking_window_start: Optional[datetime] = None
    booking_window_end: Optional[datetime] = None

class PropertyResponse(PropertyBase, BaseResponseSchema, TimestampMixin):
    """Property with approval state and cart lock"""
    status: PropertyStatus
    seller_id: uuid.UUID
    broker_id: Optional[uuid.UUID] = None
    added_by_id: uuid.UUID
    added_by_role: str
    adder_rate: Optional[Decimal] = None
    seller_rate: Optional[Decimal] = None

    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    suspension_reason: Optional[str] = None
    live_at: Optional[datetime] = None

    cart_lock: CartLockResponse
    edit_permission: EditPermissionResponse

class PropertyListResponse(PaginatedResponse):
    items: List[PropertyResponse]
