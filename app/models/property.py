# ================================
# PROPERTY MODELS (models/property.py)
# ================================

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Numeric, Uuid, Index, JSON
from sqlalchemy.orm import relationship
from app.models.base import Base, AuditMixin

PROPERTY_STATUSES = (
    'draft',             # Initial state when creating
    'pending_approval',  # Submitted for admin review
    'approved',          # Admin approved, but not yet live
    'live',              # Live and visible, can be added to a cart
    'rejected',
    'suspended',
    'sold',
    'rented',
    'expired',
)

# Columns making up the denormalized cart lock, cleared together on release
LOCK_FIELDS = (
    'lock_held',
    'lock_holder_id',
    'lock_reservation_id',
    'lock_reserved_at',
    'lock_visit_confirmed',
    'lock_visit_confirmed_at',
    'lock_confirmed_by_id',
    'lock_confirmed_by_role',
    'lock_confirmation_method',
    'lock_booking_window_start',
    'lock_booking_window_end',
)

class Property(Base, AuditMixin):
    """Property listing with approval status and cart lock mirror"""
    __tablename__ = "properties"

    # Basic Information
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    property_type = Column(String(50), nullable=True)  # 'Residential', 'Commercial', 'Plot', ...
    city = Column(String(255), nullable=True)
    price = Column(Numeric(14, 2), nullable=False)

    # Ownership
    seller_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    broker_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    added_by_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    added_by_role = Column(String(20), nullable=False)  # 'seller' or 'broker'

    # Per-property commission overrides (percent); NULL means use the rule
    adder_rate = Column(Numeric(5, 2), nullable=True)
    seller_rate = Column(Numeric(5, 2), nullable=True)

    # Approval workflow
    status = Column(String(30), nullable=False, default='pending_approval')
    previous_status = Column(String(30), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Uuid, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Uuid, ForeignKey('users.id'), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    suspended_by = Column(Uuid, ForeignKey('users.id'), nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspension_reason = Column(Text, nullable=True)
    live_at = Column(DateTime(timezone=True), nullable=True)

    # Admin-granted edit window for listings past review
    edit_permission_enabled = Column(Boolean, default=False, nullable=False)
    edit_permission_fields = Column(JSON, nullable=True)  # e.g. ["price", "description"]
    edit_permission_start = Column(DateTime(timezone=True), nullable=True)
    edit_permission_end = Column(DateTime(timezone=True), nullable=True)
    edit_permission_reason = Column(Text, nullable=True)
    edit_permission_granted_by = Column(Uuid, ForeignKey('users.id'), nullable=True)

    # Cart lock (mirror of the single active cart item, written only by the reservation engine)
    lock_held = Column(Boolean, default=False, nullable=False)
    lock_holder_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    lock_reservation_id = Column(Uuid, nullable=True)
    lock_reserved_at = Column(DateTime(timezone=True), nullable=True)
    lock_visit_confirmed = Column(Boolean, default=False, nullable=False)
    lock_visit_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    lock_confirmed_by_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    lock_confirmed_by_role = Column(String(20), nullable=True)
    lock_confirmation_method = Column(String(20), nullable=True)
    lock_booking_window_start = Column(DateTime(timezone=True), nullable=True)
    lock_booking_window_end = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    seller = relationship("User", foreign_keys=[seller_id])
    broker = relationship("User", foreign_keys=[broker_id])
    added_by = relationship("User", foreign_keys=[added_by_id])
    cart_items = relationship("CartItem", back_populates="property")
    commissions = relationship("Commission", back_populates="property")

    __table_args__ = (
        Index('idx_properties_status', 'status'),
        Index('idx_properties_seller_id', 'seller_id'),
        Index('idx_properties_broker_id', 'broker_id'),
        Index('idx_properties_lock_held', 'lock_held'),
    )

    def lock_snapshot(self) -> dict:
        """Current cart lock as a plain dict"""
        return {
            "held": bool(self.lock_held),
            "holder_id": self.lock_holder_id,
            "reservation_id": self.lock_reservation_id,
            "reserved_at": self.lock_reserved_at,
            "visit_confirmed": bool(self.lock_visit_confirmed),
            "visit_confirmed_at": self.lock_visit_confirmed_at,
            "confirmed_by_id": self.lock_confirmed_by_id,
            "confirmed_by_role": self.lock_confirmed_by_role,
            "confirmation_method": self.lock_confirmation_method,
            "booking_window_start": self.lock_booking_window_start,
            "booking_window_end": self.lock_booking_window_end,
        }

    def edit_permission_snapshot(self) -> dict:
        return {
            "enabled": bool(self.edit_permission_enabled),
            "allowed_fields": list(self.edit_permission_fields or []),
            "start_time": self.edit_permission_start,
            "end_time": self.edit_permission_end,
            "reason": self.edit_permission_reason,
            "granted_by": self.edit_permission_granted_by,
        }

    def __repr__(self):
        return f"<Property(title='{self.title}', status='{self.status}', locked={self.lock_held})>"
