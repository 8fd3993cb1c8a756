# ================================
# CART MODELS (models/cart.py)
# ================================

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid, Index, text
from sqlalchemy.orm import relationship
from app.models.base import Base

ITEM_STATUSES = ('active', 'expired', 'purchased', 'removed', 'completed')
TERMINAL_ITEM_STATUSES = ('expired', 'purchased', 'removed', 'completed')
VISIT_STATUSES = ('pending', 'scheduled', 'confirmed', 'completed', 'expired', 'cancelled')
CONFIRMATION_METHODS = ('otp', 'qr', 'manual', 'scheduled')
VISIT_TYPES = ('in_person', 'virtual', 'broker_accompanied')

class Cart(Base):
    """One cart per buyer"""
    __tablename__ = "carts"

    buyer_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)

    # Relationships
    buyer = relationship("User", back_populates="cart")
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.reserved_at")

    def __repr__(self):
        return f"<Cart(buyer='{self.buyer_id}')>"

class CartItem(Base):
    """A buyer's reservation on one property"""
    __tablename__ = "cart_items"

    # Foreign Keys
    cart_id = Column(Uuid, ForeignKey('carts.id', ondelete='CASCADE'), nullable=False)
    buyer_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    property_id = Column(Uuid, ForeignKey('properties.id'), nullable=False)

    # Lifecycle
    status = Column(String(20), nullable=False, default='active')
    visit_status = Column(String(20), nullable=False, default='pending')
    reserved_at = Column(DateTime(timezone=True), nullable=False)

    # Visit scheduling
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    scheduled_time = Column(String(20), nullable=True)
    visit_type = Column(String(30), nullable=True)
    phone_number = Column(String(50), nullable=True)
    special_requests = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Visit confirmation
    visit_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    confirmed_by_role = Column(String(20), nullable=True)
    confirmation_method = Column(String(20), nullable=True)

    # Booking window (set on visit confirmation)
    booking_window_start = Column(DateTime(timezone=True), nullable=True)
    booking_window_end = Column(DateTime(timezone=True), nullable=True)

    # Release
    released_at = Column(DateTime(timezone=True), nullable=True)
    release_reason = Column(String(50), nullable=True)

    # Relationships
    cart = relationship("Cart", back_populates="items")
    property = relationship("Property", back_populates="cart_items")
    buyer = relationship("User", foreign_keys=[buyer_id])
    confirmed_by = relationship("User", foreign_keys=[confirmed_by_id])

    __table_args__ = (
        # At most one active reservation per property, system-wide
        Index(
            'uq_cart_items_active_property',
            'property_id',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index('idx_cart_items_buyer_status', 'buyer_id', 'status'),
        Index('idx_cart_items_status', 'status'),
        Index('idx_cart_items_booking_window_end', 'booking_window_end'),
    )

    def __repr__(self):
        return f"<CartItem(property='{self.property_id}', buyer='{self.buyer_id}', status='{self.status}', visit='{self.visit_status}')>"
