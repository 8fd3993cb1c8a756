# ================================
# COMMISSION MODELS (models/commission.py)
# ================================

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Numeric, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from app.models.base import Base, AuditMixin

COMMISSION_TYPES = ('adder', 'seller', 'adder_seller')
COMMISSION_STATUSES = ('pending', 'approved', 'paid', 'cancelled')
PAYMENT_METHODS = ('bank_transfer', 'cheque', 'cash', 'online')

class Commission(Base, AuditMixin):
    """Broker commission record, append-only apart from the admin workflow"""
    __tablename__ = "commissions"

    # Foreign Keys
    broker_id = Column(Uuid, ForeignKey('users.id'), nullable=False)
    property_id = Column(Uuid, ForeignKey('properties.id'), nullable=False)
    reservation_id = Column(Uuid, ForeignKey('cart_items.id'), nullable=True)  # Set for visit-confirmation commissions

    # Amounts
    property_price = Column(Numeric(14, 2), nullable=False)
    commission_type = Column(String(20), nullable=False)
    rate = Column(Numeric(5, 2), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)

    # Workflow
    status = Column(String(20), nullable=False, default='pending')
    approved_by = Column(Uuid, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    paid_by = Column(Uuid, ForeignKey('users.id'), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(30), nullable=True)
    transaction_id = Column(String(255), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Admin override
    is_override = Column(Boolean, default=False, nullable=False)
    original_rate = Column(Numeric(5, 2), nullable=True)
    override_reason = Column(Text, nullable=True)

    # Relationships
    broker = relationship("User", foreign_keys=[broker_id])
    property = relationship("Property", back_populates="commissions")
    reservation = relationship("CartItem")

    __table_args__ = (
        # One commission of each type per reservation, however often confirmation is retried
        UniqueConstraint('reservation_id', 'commission_type', name='uq_commissions_reservation_type'),
        Index('idx_commissions_broker_status', 'broker_id', 'status'),
        Index('idx_commissions_property_id', 'property_id'),
        Index('idx_commissions_type_status', 'commission_type', 'status'),
    )

    def __repr__(self):
        return f"<Commission(broker='{self.broker_id}', type='{self.commission_type}', amount={self.amount}, status='{self.status}')>"
