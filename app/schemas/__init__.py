# ================================
# SCHEMAS PACKAGE INITIALIZATION (schemas/__init__.py)
# ================================

"""
Pydantic Schemas Package

Zentrale Imports für alle Schemas im System
"""

from app.schemas.base import (
    BaseSchema,
    BaseResponseSchema,
    TimestampMixin,
    PaginatedResponse,
    ErrorResponse,
    SuccessResponse,
    ReasonRequest,
    OptionalNotesRequest
)
from app.schemas.user import UserBasicInfo, UserResponse
from app.schemas.property import (
    PropertyCreate,
    PropertyUpdate,
    PropertyApprove,
    PropertyResponse,
    PropertyListResponse,
    CartLockResponse,
    EditPermissionGrant,
    EditPermissionResponse
)
from app.schemas.cart import (
    ReserveRequest,
    ScheduleVisitRequest,
    ConfirmVisitRequest,
    AdminReleaseRequest,
    CartItemResponse,
    CartResponse
)
from app.schemas.commission import (
    CommissionMarkPaid,
    CommissionOverride,
    CommissionCancel,
    CommissionCalculation,
    CommissionResponse,
    CommissionListResponse
)
from app.schemas.rule import RuleValue, ReservationRules, RuleUpsert, RuleResponse
from app.schemas.notification import ReservationEvent, NotificationResponse, NotificationListResponse
from app.schemas.scheduler import SweepResult
