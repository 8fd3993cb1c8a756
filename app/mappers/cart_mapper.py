"""
Cart Mapper Module
Handles conversion of CartItem ORM objects to response dictionaries
"""
from typing import Dict, Any, List
from app.models.cart import CartItem
from app.schemas.rule import ReservationRules
from app.services.reservation_engine import ReservationEngine


def map_cart_item_to_response(item: CartItem, rules: ReservationRules) -> Dict[str, Any]:
    """
    Map a CartItem ORM object to the CartItemResponse format

    Active items that are still waiting for a visit carry their visit deadline.
    """
    data = {
        column.name: getattr(item, column.name)
        for column in CartItem.__table__.columns
    }
    if item.status == "active" and item.visit_status != "confirmed":
        data["visit_deadline"] = ReservationEngine.visit_deadline(item, rules)
    else:
        data["visit_deadline"] = None
    return data


def map_cart_to_response(buyer_id, items: List[CartItem], rules: ReservationRules) -> Dict[str, Any]:
    """Map a buyer's items and effective limits to the CartResponse format"""
    return {
        "buyer_id": buyer_id,
        "max_properties": rules.max_properties,
        "visit_window_days": rules.visit_window_days,
        "booking_window_days": rules.booking_window_days,
        "active_count": sum(1 for item in items if item.status == "active"),
        "items": [map_cart_item_to_response(item, rules) for item in items],
    }
