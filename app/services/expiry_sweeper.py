# ================================
# EXPIRY SWEEPER (services/expiry_sweeper.py)
# ================================

from typing import Optional, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from sqlalchemy import text
from sqlalchemy.orm import Session
import threading
import logging

from app.core.database import SessionLocal
from app.models.cart import CartItem
from app.models.property import Property
from app.schemas.scheduler import SweepResult
from app.services.reservation_engine import ReservationEngine
from app.services.rule_service import RuleService
from app.utils import utcnow, ensure_utc

logger = logging.getLogger(__name__)

# pg_advisory_lock key reserved for the expiry sweep
SWEEP_LOCK_KEY = 734_201

class ExpirySweeper:
    """
    Periodic pass over active reservations.

    Each item is expired in its own short transaction through the same
    expire_if_due the interactive paths use, then lock mirrors are
    reconciled against their items. Only one sweep runs at a time, per
    process and, on PostgreSQL, across workers; a run requested while
    another is in progress is skipped.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory
        self._guard = threading.Lock()
        self.last_result: Optional[SweepResult] = None

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def run(self, now: Optional[datetime] = None) -> SweepResult:
        if not self._guard.acquire(blocking=False):
            logger.info("Expiry sweep already in progress, skipping this run")
            return SweepResult(started_at=utcnow(), finished_at=utcnow(), skipped=True)

        try:
            with self._cluster_lock() as acquired:
                if not acquired:
                    logger.info("Expiry sweep running on another worker, skipping this run")
                    return SweepResult(started_at=utcnow(), finished_at=utcnow(), skipped=True)

                result = self._sweep(ensure_utc(now) if now else None)
                self.last_result = result
                return result
        finally:
            self._guard.release()

    @contextmanager
    def _cluster_lock(self) -> Iterator[bool]:
        """
        Advisory lock shared by all workers on PostgreSQL. Held on its own
        connection so commits in the sweep session cannot move it. Other
        backends run single-process and rely on the thread guard alone.
        """
        session = self.session_factory()
        try:
            bind = session.get_bind()
        finally:
            session.close()

        if bind.dialect.name != "postgresql":
            yield True
            return

        with bind.connect() as conn:
            acquired = bool(conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": SWEEP_LOCK_KEY}
            ).scalar())
            conn.commit()
            try:
                yield acquired
            finally:
                if acquired:
                    conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": SWEEP_LOCK_KEY})
                    conn.commit()

    def _sweep(self, now: Optional[datetime]) -> SweepResult:
        result = SweepResult(started_at=utcnow())
        db = self.session_factory()
        try:
            rules = RuleService.get_reservation_rules(db)

            item_ids = [
                row.id for row in db.query(CartItem.id).filter(CartItem.status == "active").all()
            ]
            for item_id in item_ids:
                result.checked += 1
                try:
                    item = db.get(CartItem, item_id, populate_existing=True)
                    if item is None:
                        continue
                    if ReservationEngine.expire_if_due(db, item, now=now or utcnow(), rules=rules):
                        result.expired += 1
                except Exception as e:
                    db.rollback()
                    result.failed += 1
                    logger.error(f"Failed to expire reservation {item_id}: {e}", exc_info=True)

            self._reconcile(db, result)
        finally:
            db.close()

        result.finished_at = utcnow()
        logger.info(
            f"Expiry sweep finished: {result.checked} checked, {result.expired} expired, "
            f"{result.repaired} repaired, {result.failed} failed"
        )
        return result

    def _reconcile(self, db: Session, result: SweepResult) -> None:
        """Repair every property whose mirror or item claims a lock"""
        locked = {row.id for row in db.query(Property.id).filter(Property.lock_held.is_(True)).all()}
        held = {
            row.property_id
            for row in db.query(CartItem.property_id).filter(CartItem.status == "active").all()
        }

        for property_id in locked | held:
            try:
                prop = db.get(Property, property_id)
                if prop is None:
                    continue
                if ReservationEngine.reconcile_property_lock(db, prop):
                    db.commit()
                    result.repaired += 1
            except Exception as e:
                db.rollback()
                result.failed += 1
                logger.error(f"Failed to reconcile lock on property {property_id}: {e}", exc_info=True)

# Global sweeper instance
expiry_sweeper = ExpirySweeper()
