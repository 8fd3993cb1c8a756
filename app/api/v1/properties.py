# ================================
# PROPERTY API ROUTES (api/v1/properties.py)
# ================================

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
import uuid

from app.dependencies import get_db, get_current_user, require_role, get_pagination_params
from app.models.user import User
from app.services.property_service import PropertyService
from app.services.reservation_engine import ReservationEngine
from app.mappers.property_mapper import map_property_to_response
from app.schemas.property import (
    PropertyCreate,
    PropertyUpdate,
    PropertyResponse,
    PropertyListResponse,
    CartLockResponse
)

router = APIRouter()

@router.post("", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
async def create_property(
    property_data: PropertyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role("seller", "broker", "admin"))
):
    """List a new property"""
    prop = PropertyService.create_property(db, property_data, current_user)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.get("", response_model=PropertyListResponse)
async def list_properties(
    status: Optional[str] = Query(None, description="Filter by approval status (admins, sellers, brokers)"),
    available_only: bool = Query(False, description="Only live properties not in any cart"),
    mine: bool = Query(False, description="Only properties I sell or broker"),
    pagination: tuple[int, int] = Depends(get_pagination_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List properties; buyers only see live listings"""
    page, page_size = pagination

    seller_id = broker_id = None
    if mine and current_user.role == "seller":
        seller_id = current_user.id
    elif mine and current_user.role == "broker":
        broker_id = current_user.id

    if current_user.role == "buyer":
        status = "live"

    items, total = PropertyService.list_properties(
        db,
        status=status,
        seller_id=seller_id,
        broker_id=broker_id,
        available_only=available_only,
        skip=(page - 1) * page_size,
        limit=page_size
    )
    return PropertyListResponse(
        items=[PropertyResponse.model_validate(map_property_to_response(p)) for p in items],
        total=total,
        page=page,
        page_size=page_size
    )

@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Property details"""
    prop = PropertyService.get_property(db, property_id)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.put("/{property_id}", response_model=PropertyResponse)
async def update_property(
    property_id: uuid.UUID,
    property_data: PropertyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role("seller", "broker", "admin"))
):
    """Edit listing details while the property is still editable"""
    prop = PropertyService.update_property(db, property_id, property_data, current_user)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.post("/{property_id}/submit", response_model=PropertyResponse)
async def submit_for_approval(
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role("seller", "broker", "admin"))
):
    """Submit a draft or rejected listing for admin review"""
    prop = PropertyService.submit_for_approval(db, property_id, current_user)
    return PropertyResponse.model_validate(map_property_to_response(prop))

@router.get("/{property_id}/lock", response_model=CartLockResponse)
async def get_lock_status(
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Current cart lock of a property"""
    return CartLockResponse.model_validate(ReservationEngine.get_lock_status(db, property_id))
