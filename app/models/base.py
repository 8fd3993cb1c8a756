# ================================
# BASE MODEL (models/base.py)
# ================================

from sqlalchemy import Column, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import as_declarative, declared_attr
import uuid

@as_declarative()
class Base:
    """Base Model mit gemeinsamen Feldern und Funktionalität"""

    # Automatische Tabellennamen basierend auf Klassennamen
    @declared_attr
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"

    # Gemeinsame Spalten
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

class AuditMixin:
    """Mixin für Audit-Felder (created_by, updated_by)"""

    @declared_attr
    def created_by(cls):
        return Column(Uuid, ForeignKey('users.id'), nullable=True)

    @declared_attr
    def updated_by(cls):
        return Column(Uuid, ForeignKey('users.id'), nullable=True)
