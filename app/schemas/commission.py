# ================================
# COMMISSION SCHEMAS (schemas/commission.py)
# ================================

from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal
from pydantic import Field
import uuid

from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin, PaginatedResponse

CommissionType = Literal["adder", "seller", "adder_seller"]
CommissionStatus = Literal["pending", "approved", "paid", "cancelled"]
PaymentMethod = Literal["bank_transfer", "cheque", "cash", "online"]

class CommissionMarkPaid(BaseSchema):
    payment_method: PaymentMethod
    transaction_id: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

class CommissionOverride(BaseSchema):
    """Admin rate override; keeps the original rate for reference"""
    rate: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    reason: str = Field(..., min_length=10, max_length=2000)

class CommissionCancel(BaseSchema):
    reason: Optional[str] = Field(None, max_length=2000)

class CommissionCalculation(BaseSchema):
    """Result of a commission calculation"""
    commission_type: CommissionType
    property_price: Decimal
    rate: Decimal
    amount: Decimal

class CommissionResponse(BaseResponseSchema, TimestampMixin):
    broker_id: uuid.UUID
    property_id: uuid.UUID
    reservation_id: Optional[uuid.UUID] = None

    property_price: Decimal
    commission_type: CommissionType
    rate: Decimal
    amount: Decimal
    status: CommissionStatus

    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    paid_by: Optional[uuid.UUID] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None

    is_override: bool
    original_rate: Optional[Decimal] = None
    override_reason: Optional[str] = None

class CommissionListResponse(PaginatedResponse):
    items: List[CommissionResponse]
