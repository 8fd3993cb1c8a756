# ================================
# CART API ROUTES (api/v1/cart.py)
# ================================

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
import uuid

from app.dependencies import get_db, get_buyer_user
from app.models.user import User
from app.services.reservation_engine import ReservationEngine
from app.services.rule_service import RuleService
from app.mappers.cart_mapper import map_cart_item_to_response, map_cart_to_response
from app.schemas.base import SuccessResponse
from app.schemas.cart import (
    ReserveRequest,
    ScheduleVisitRequest,
    ConfirmVisitRequest,
    CartItemResponse,
    CartResponse
)
from app.core.exceptions import NotFoundError

router = APIRouter()

def _own_reservation(db: Session, reservation_id: uuid.UUID, buyer: User):
    item = ReservationEngine.get_reservation(db, reservation_id)
    if item.buyer_id != buyer.id:
        raise NotFoundError("Reservation not found")
    return item

@router.get("", response_model=CartResponse)
async def get_cart(
    include_history: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_buyer_user)
):
    """Buyer's cart; stale reservations are expired before listing"""
    items, rules = ReservationEngine.get_cart(db, current_user.id, include_history=include_history)
    return CartResponse.model_validate(map_cart_to_response(current_user.id, items, rules))

@router.post("/items", response_model=CartItemResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    data: ReserveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_buyer_user)
):
    """Reserve a live property"""
    item = ReservationEngine.reserve(db, current_user.id, data.property_id)
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))

@router.delete("/items/{reservation_id}", response_model=SuccessResponse)
async def remove_from_cart(
    reservation_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_buyer_user)
):
    """Remove a property from the cart and unlock it"""
    item = _own_reservation(db, reservation_id, current_user)
    released = ReservationEngine.release(db, reservation_id, "removed", actor_id=current_user.id)
    db.refresh(item)
    return SuccessResponse(
        message="Property removed from cart" if released else f"Reservation is already {item.status}",
        data={"reservation_id": str(reservation_id), "released": released, "status": item.status}
    )

@router.post("/items/{reservation_id}/schedule-visit", response_model=CartItemResponse)
async def schedule_visit(
    reservation_id: uuid.UUID,
    data: ScheduleVisitRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_buyer_user)
):
    """Book a visit slot inside the visit window"""
    item = ReservationEngine.schedule_visit(
        db,
        reservation_id=reservation_id,
        buyer_id=current_user.id,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        visit_type=data.visit_type,
        phone_number=data.phone_number,
        notes=data.notes,
        special_requests=data.special_requests
    )
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))

@router.post("/items/{reservation_id}/confirm-visit", response_model=CartItemResponse)
async def confirm_visit(
    reservation_id: uuid.UUID,
    data: ConfirmVisitRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_buyer_user)
):
    """Buyer confirms their own visit"""
    _own_reservation(db, reservation_id, current_user)
    item = ReservationEngine.confirm_visit(
        db, reservation_id, confirmed_by=current_user, method=data.method, notes=data.notes
    )
    rules = RuleService.get_reservation_rules(db)
    return CartItemResponse.model_validate(map_cart_item_to_response(item, rules))
