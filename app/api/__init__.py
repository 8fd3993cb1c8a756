# ================================
# API PACKAGE INITIALIZATION (api/__init__.py)
# ================================

"""
API Package

Root package für alle API-Routen
"""

from fastapi import APIRouter

from app.api.v1 import cart, broker, properties, admin, notifications, users

API_VERSION = "1.0.0"
API_TITLE = "Property Marketplace API"
API_DESCRIPTION = """
Property marketplace with time-boxed cart reservations

## Features
- Property listing and admin approval workflow
- Cart reservations with a visit window and a booking window
- Broker visit confirmation with commission tracking
- Hourly expiry of stale reservations
- Notification inbox and audit logging

## Authentication
- JWT bearer tokens (`sub` = user id)

## Authorization
- Roles: admin, seller, buyer, broker
"""

# V1 Router
v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"],
    responses={401: {"description": "Authentication required"}}
)

v1_router.include_router(
    properties.router,
    prefix="/properties",
    tags=["Properties"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "Property not found"}
    }
)

v1_router.include_router(
    cart.router,
    prefix="/cart",
    tags=["Cart"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Buyer access required"},
        409: {"description": "Property not available or cart limit reached"},
        410: {"description": "Reservation window expired"}
    }
)

v1_router.include_router(
    broker.router,
    prefix="/broker",
    tags=["Broker"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Broker access required"}
    }
)

v1_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"],
    responses={401: {"description": "Authentication required"}}
)

v1_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["Admin"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Admin access required"}
    }
)

__all__ = ["v1_router", "API_VERSION", "API_TITLE", "API_DESCRIPTION"]
