# ================================
# AUDIT & MONITORING MODELS (models/audit.py)
# ================================

from sqlalchemy import Column, String, Text, JSON, ForeignKey, Uuid, Index
from sqlalchemy.orm import relationship
from app.models.base import Base

class AuditLog(Base):
    """Audit Log für alle wichtigen Aktionen"""
    __tablename__ = "audit_logs"

    # Foreign Keys
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    # Action Information
    action = Column(String(100), nullable=False)  # 'PROPERTY_LOCKED', 'VISIT_CONFIRMED', 'COMMISSION_PAID', etc.
    resource_type = Column(String(100), nullable=True)  # 'property', 'cart_item', 'commission', 'rule'
    resource_id = Column(Uuid, nullable=True)

    # Change Details
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    # Context
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index('idx_audit_logs_resource', 'resource_type', 'resource_id'),
    )

    def __repr__(self):
        return f"<AuditLog(action='{self.action}', user='{self.user_id}', resource='{self.resource_type}')>"
