# ================================
# SCHEDULER SCHEMAS (schemas/scheduler.py)
# ================================

from typing import Optional
from datetime import datetime

from app.schemas.base import BaseSchema

class SweepResult(BaseSchema):
    """Outcome of one expiry sweep"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    checked: int = 0
    expired: int = 0
    failed: int = 0
    repaired: int = 0
