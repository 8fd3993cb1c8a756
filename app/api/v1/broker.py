# ================================
# BROKER API ROUTES (api/v1/broker.py)
# ================================

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
import uuid

from app.dependencies import get_db, get_broker_user, get_pagination_params
from app.models.cart import CartItem
from app.models.property import Property
from app.models.user import User
from app.services.reservation_engine import ReservationEngine
from app.services.commission_service import CommissionService
from app.services.rule_service import RuleService
from app.mappers.cart_mapper import map_cart_item_to_response
from app.schemas.cart import ConfirmVisitRequest, CartItemResponse
from app.schemas.commission import CommissionResponse, CommissionListResponse

router = APIRouter()

@router.get("/reservations", response_model=list[CartItemResponse])
async def list_assigned_reservations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_broker_user)
):
    """Active reservations on properties assigned to the broker"""
    items = db.query(CartItem).join(Property, CartItem.property_id == Property.id).filter(
        Property.broker_id == current_user.id,
        CartItem.status == "active"
    ).order_by(CartItem.reserved_at.desc()).all()

    rules = RuleService.get_reservation_rules(db)
    return [CartItemResponse.model_validate(map_cart_item_to_response(item, rules)) for item in items]

@router.post("/reservations/{reservation_id}/confirm-visit", response_model=CartItemResponse)
async def confirm_visit(
    reservation_id: uuid.UUID,
    data: ConfirmVisitRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_broker_user)
):
    """Assigned broker confirms a buyer's visit"""
    item = ReservationEngine.confirm_visit(
        db, reservation_id, confirmed_by=current_user, method=data.method, notes=data.notes
    )
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))

@router.get("/commissions", response_model=CommissionListResponse)
async def list_my_commissions(
    status: Optional[str] = Query(None),
    commission_type: Optional[str] = Query(None),
    pagination: tuple[int, int] = Depends(get_pagination_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_broker_user)
):
    """Commissions earned by the current broker"""
    page, page_size = pagination
    items, total = CommissionService.list_commissions(
        db,
        broker_id=current_user.id,
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
