# ================================
# RULE SCHEMAS (schemas/rule.py)
# ================================

from typing import Optional, Dict, Any
from pydantic import Field

from app.schemas.base import BaseSchema, BaseResponseSchema, TimestampMixin

class RuleValue(BaseSchema):
    """Resolved rule value"""
    value: Any
    priority: int

class ReservationRules(BaseSchema):
    """Effective limits for the reservation engine"""
    max_properties: int
    visit_window_days: int
    booking_window_days: int
    adder_rate: float
    seller_rate: float

class RuleUpsert(BaseSchema):
    rule_type: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    value: Any
    conditions: Optional[Dict[str, Any]] = None
    priority: int = Field(1, ge=0)
    is_active: bool = True

class RuleResponse(BaseResponseSchema, TimestampMixin):
    rule_type: str
    name: str
    description: Optional[str] = None
    value: Any
    conditions: Optional[Dict[str, Any]] = None
    priority: int
    is_active: bool
