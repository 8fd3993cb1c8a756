"""
Property Mapper Module
Handles conversion of Property ORM objects to response dictionaries
"""
from typing import Dict, Any
from app.models.property import Property


def map_property_to_response(prop: Property) -> Dict[str, Any]:
    """
    Map a Property ORM object to the PropertyResponse format

    Args:
        prop: Property ORM object

    Returns:
        Dictionary matching PropertyResponse schema, with the flat lock
        columns folded into a cart_lock object
    """
    return {
        "id": prop.id,
        "title": prop.title,
        "description": prop.description,
        "property_type": prop.property_type,
        "city": prop.city,
        "price": prop.price,
        "status": prop.status,
        "seller_id": prop.seller_id,
        "broker_id": prop.broker_id,
        "added_by_id": prop.added_by_id,
        "added_by_role": prop.added_by_role,
        "adder_rate": prop.adder_rate,
        "seller_rate": prop.seller_rate,
        "submitted_at": prop.submitted_at,
        "approved_at": prop.approved_at,
        "rejection_reason": prop.rejection_reason,
        "suspension_reason": prop.suspension_reason,
        "live_at": prop.live_at,
        "created_at": prop.created_at,
        "updated_at": prop.updated_at,
        "cart_lock": prop.lock_snapshot(),
        "edit_permission": prop.edit_permission_snapshot(),
    }
