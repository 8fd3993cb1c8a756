# ================================
# ADMIN API ROUTES (api/v1/admin.py)
# ================================

from typing import Optional, List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
import asyncio
import uuid

from app.dependencies import get_db, get_admin_user, get_pagination_params
from app.models.user import User
from app.services.property_service import PropertyService
from app.services.reservation_engine import ReservationEngine
from app.services.commission_service import CommissionService
from app.services.rule_service import RuleService
from app.services.expiry_sweeper import expiry_sweeper
from app.core.scheduler import scheduler
from app.mappers.property_mapper import map_property_to_response
from app.mappers.cart_mapper import map_cart_item_to_response
from app.schemas.base import SuccessResponse, ReasonRequest
from app.schemas.property import PropertyApprove, PropertyResponse, EditPermissionGrant
from app.schemas.cart import AdminReleaseRequest, ConfirmVisitRequest, CartItemResponse
from app.schemas.commission import (
    CommissionMarkPaid,
    CommissionOverride,
    CommissionCancel,
    CommissionResponse,
    CommissionListResponse
)
from app.schemas.rule import RuleUpsert, RuleResponse
from app.schemas.scheduler import SweepResult
from app.utils.audit import AuditLogger

router = APIRouter()
audit_logger = AuditLogger()

# ================================
# PROPERTY APPROVAL
# ================================

@router.get("/properties/pending", response_model=List[PropertyResponse])
async def list_pending_properties(
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Listings waiting for review"""
    items, _ = PropertyService.list_properties(db, status="pending_approval", limit=100)
    return [PropertyResponse.model_validate(map_property_to_response(p)) for p in items]

@router.post("/properties/{property_id}/approve", response_model=PropertyResponse)
async def approve_property(
    property_id: uuid.UUID,
    data: PropertyApprove,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    prop = PropertyService.approve_property(db, property_id, admin, go_live=data.go_live)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/properties/{property_id}/reject", response_model=PropertyResponse)
async def reject_property(
    property_id: uuid.UUID,
    data: ReasonRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    prop = PropertyService.reject_property(db, property_id, admin, data.reason)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/properties/{property_id}/suspend", response_model=PropertyResponse)
async def suspend_property(
    property_id: uuid.UUID,
    data: ReasonRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    prop = PropertyService.suspend_property(db, property_id, admin, data.reason)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/properties/{property_id}/unsuspend", response_model=PropertyResponse)
async def unsuspend_property(
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    prop = PropertyService.unsuspend_property(db, property_id, admin)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/properties/{property_id}/make-live", response_model=PropertyResponse)
async def make_live(
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    prop = PropertyService.make_live(db, property_id, admin)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/properties/{property_id}/grant-edit", response_model=PropertyResponse)
async def grant_edit_permission(
    property_id: uuid.UUID,
    data: EditPermissionGrant,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Let the seller change selected fields of a reviewed listing for a while"""
    prop = PropertyService.grant_edit_permission(
        db, property_id, admin, list(data.allowed_fields), data.reason, data.duration_hours
    )
    return PropertyResponse.model_validate(map_property_to_response(prop))

# ================================
# RESERVATION OVERRIDES
# ================================

@router.post("/reservations/{reservation_id}/release", response_model=SuccessResponse)
async def release_reservation(
    reservation_id: uuid.UUID,
    data: AdminReleaseRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Force-release a reservation"""
    released = ReservationEngine.release(db, reservation_id, data.reason, actor_id=admin.id)
    if released:
        audit_logger.log_admin_action(
            db=db,
            action="RESERVATION_FORCE_RELEASED",
            admin_user_id=admin.id,
            resource_type="cart_item",
            resource_id=reservation_id,
            reason=data.note,
            details={"release_reason": data.reason}
        )
        db.commit()

    item = ReservationEngine.get_reservation(db, reservation_id)
    return SuccessResponse(
        message="Reservation released" if released else f"Reservation is already {item.status}",
        data={"reservation_id": str(reservation_id), "released": released, "status": item.status}
    )

@router.post("/reservations/{reservation_id}/confirm-visit", response_model=CartItemResponse)
async def confirm_visit(
    reservation_id: uuid.UUID,
    data: ConfirmVisitRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Confirm a visit on behalf of the buyer or broker"""
    item = ReservationEngine.confirm_visit(
        db, reservation_id, confirmed_by=admin, method=data.method, notes=data.notes
    )
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))

@router.post("/reservations/{reservation_id}/complete-purchase", response_model=CartItemResponse)
async def complete_purchase(
    reservation_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Finalize the sale of a property whose visit was confirmed"""
    item = ReservationEngine.complete_purchase(db, reservation_id, admin)
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))

# ================================
# COMMISSIONS
# ================================

@router.get("/commissions", response_model=CommissionListResponse)
async def list_commissions(
    broker_id: Optional[uuid.UUID] = Query(None),
    property_id: Optional[uuid.UUID] = Query(None),
    status: Optional[str] = Query(None),
    commission_type: Optional[str] = Query(None),
    pagination: tuple[int, int] = Depends(get_pagination_params),
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    page, page_size = pagination
    items, total = CommissionService.list_commissions(
        db,
        broker_id=broker_id,
        property_id=property_id,
        status=status,
        commission_type=commission_type,
        skip=(page - 1) * page_size,
        limit=page_size
    )
    return CommissionListResponse(
        items=[CommissionResponse.model_validate(c) for c in items],
        total=total,
        page=page,
        page_size=page_size
    )

@router.post("/commissions/{commission_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    commission_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    commission = CommissionService.approve(db, commission_id, admin.id)
    return CommissionResponse.model_validate(commission)

@router.post("/commissions/{commission_id}/mark-paid", response_model=CommissionResponse)
async def mark_commission_paid(
    commission_id: uuid.UUID,
    data: CommissionMarkPaid,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    commission = CommissionService.mark_paid(
        db, commission_id, admin.id,
        payment_method=data.payment_method,
        transaction_id=data.transaction_id,
        notes=data.notes
    )
    return CommissionResponse.model_validate(commission)

@router.post("/commissions/{commission_id}/override", response_model=CommissionResponse)
async def override_commission(
    commission_id: uuid.UUID,
    data: CommissionOverride,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    commission = CommissionService.override(db, commission_id, admin.id, data.rate, data.reason)
    return CommissionResponse.model_validate(commission)

@router.post("/commissions/{commission_id}/cancel", response_model=CommissionResponse)
async def cancel_commission(
    commission_id: uuid.UUID,
    data: CommissionCancel,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    commission = CommissionService.cancel(db, commission_id, admin.id, data.reason)
    return CommissionResponse.model_validate(commission)

# ================================
# RULES
# ================================

@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    return [RuleResponse.model_validate(r) for r in RuleService.list_rules(db, include_inactive)]

@router.put("/rules", response_model=RuleResponse)
async def upsert_rule(
    data: RuleUpsert,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Create a rule or update the one with the same type and conditions"""
    return RuleResponse.model_validate(RuleService.upsert_rule(db, data, admin.id))

@router.delete("/rules/{rule_id}", response_model=RuleResponse)
async def deactivate_rule(
    rule_id: uuid.UUID,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    return RuleResponse.model_validate(RuleService.deactivate_rule(db, rule_id, admin.id))

# ================================
# SCHEDULER
# ================================

@router.get("/scheduler/status")
async def scheduler_status(admin: User = Depends(get_admin_user)):
    """Background task stats and the most recent sweep"""
    last = expiry_sweeper.last_result
    return {
        "running": scheduler.running,
        "tasks": scheduler.get_task_status(),
        "sweep_in_progress": expiry_sweeper.is_running,
        "last_sweep": last.model_dump(mode="json") if last else None
    }

@router.post("/scheduler/sweep", response_model=SweepResult)
async def run_sweep_now(admin: User = Depends(get_admin_user)):
    """Run the expiry sweep immediately; skipped if one is already in progress"""
    return await asyncio.to_thread(expiry_sweeper.run)
