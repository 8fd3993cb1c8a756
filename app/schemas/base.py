# ================================
# BASE SCHEMAS (schemas/base.py)
# ================================

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID

class BaseSchema(BaseModel):
    """Base Schema mit gemeinsamer Konfiguration"""
    model_config = ConfigDict(
        from_attributes=True,  # Pydantic v2: ermöglicht ORM integration
        str_strip_whitespace=True,
        validate_assignment=True,
        arbitrary_types_allowed=True,
    )

class BaseResponseSchema(BaseSchema):
    """Base Schema for API responses with ID field"""
    id: UUID

class TimestampMixin(BaseModel):
    """Mixin für Timestamp-Felder"""
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

# ================================
# PAGINATION SCHEMAS
# ================================

class PaginatedResponse(BaseSchema):
    """Generic paginated list envelope"""
    total: int = Field(..., description="Total number of matching items")
    page: int = Field(..., ge=1, description="Page number")
    page_size: int = Field(..., ge=1, description="Items per page")

# ================================
# ERROR / SUCCESS RESPONSE SCHEMAS
# ================================

class ErrorResponse(BaseSchema):
    """Standard Error Response Schema"""
    detail: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Application-specific error code")
    request_id: Optional[str] = Field(None, description="Request ID for log correlation")

class SuccessResponse(BaseSchema):
    """Standard Success Response Schema"""
    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional data")

# ================================
# REASON VALIDATION
# ================================

class ReasonRequest(BaseSchema):
    """Administrative action that must be justified"""
    reason: str = Field(..., min_length=10, max_length=2000, description="At least 10 characters")

class OptionalNotesRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=2000)

