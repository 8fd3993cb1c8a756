# ================================
# UTILS PACKAGE INITIALIZATION (utils/__init__.py)
# ================================

"""
Utils Package

Audit logging and time helpers shared by the services.
"""

from datetime import datetime, timezone
from typing import Optional

from app.utils.audit import AuditLogger, audit_logger

# ================================
# TIME HELPERS
# ================================

def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return value as an aware UTC datetime.

    Some backends (SQLite) hand back naive datetimes even for
    timezone-aware columns; those are stored as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

__all__ = [
    "AuditLogger",
    "audit_logger",
    "utcnow",
    "ensure_utc",
]
