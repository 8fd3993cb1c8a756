# ================================
# USER MODELS (models/user.py)
# ================================

from sqlalchemy import Column, String, Boolean, Index
from sqlalchemy.orm import relationship
from app.models.base import Base

USER_ROLES = ("admin", "seller", "buyer", "broker")

class User(Base):
    """Marketplace user; authentication itself is handled upstream"""
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False)  # 'admin', 'seller', 'buyer', 'broker'
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    cart = relationship("Cart", back_populates="buyer", uselist=False)
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_users_role', 'role'),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}')>"
