# ================================
# RULE MODELS (models/rule.py)
# ================================

from sqlalchemy import Column, String, Text, Integer, Boolean, JSON, Index
from app.models.base import Base, AuditMixin

class Rule(Base, AuditMixin):
    """Admin-managed configuration value keyed by rule type"""
    __tablename__ = "rules"

    rule_type = Column(String(100), nullable=False)  # 'cart_max_properties', 'commission_seller', ...
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    value = Column(JSON, nullable=False)
    conditions = Column(JSON, nullable=True)  # e.g. {"userType": "buyer"}
    priority = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('idx_rules_type_active', 'rule_type', 'is_active'),
    )

    def __repr__(self):
        return f"<Rule(type='{self.rule_type}', value={self.value!r}, priority={self.priority})>"
