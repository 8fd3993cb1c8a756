# ================================
# DATABASE INITIALIZATION (models/__init__.py)
# ================================

"""
Database Models Package

Importiert alle Models für Alembic Auto-Generation
"""

from app.models.base import Base

# Import all models for Alembic auto-generation
from app.models.user import User
from app.models.property import Property
from app.models.cart import Cart, CartItem
from app.models.commission import Commission
from app.models.rule import Rule
from app.models.notification import Notification
from app.models.audit import AuditLog

# Export all models
__all__ = [
    "Base",
    "User",
    "Property",
    "Cart",
    "CartItem",
    "Commission",
    "Rule",
    "Notification",
    "AuditLog",
]
