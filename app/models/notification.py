# ================================
# NOTIFICATION MODELS (models/notification.py)
# ================================

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, JSON, Uuid, Index
from sqlalchemy.orm import relationship
from app.models.base import Base

class Notification(Base):
    """User-facing message produced from a reservation event"""
    __tablename__ = "notifications"

    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type = Column(String(50), nullable=False)  # 'property_lock', 'visit_confirmed', 'property_unlock', ...
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    priority = Column(String(20), default='medium', nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'is_read'),
    )

    def __repr__(self):
        return f"<Notification(user='{self.user_id}', type='{self.type}')>"
