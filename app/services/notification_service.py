# ================================
# NOTIFICATION SERVICE (services/notification_service.py)
# ================================

from typing import Optional, List, Iterable, Callable, Tuple
from sqlalchemy.orm import Session
import logging
import uuid

from app.config import settings
from app.core.database import SessionLocal
from app.models.notification import Notification
from app.schemas.notification import ReservationEvent
from app.core.exceptions import NotFoundError
from app.utils import utcnow

logger = logging.getLogger(__name__)

_BUYER, _SELLER, _BROKER = "buyer", "seller", "broker"

# (notification type, title, message) per event and recipient
MESSAGES = {
    "PropertyLocked": {
        _BUYER: ("property_added_to_cart", "Property Added to Cart",
                 'Property "{title}" has been added to your cart. Visit within {visit_window_days} days.'),
        _SELLER: ("property_lock", "Property Locked",
                  'Your property "{title}" has been added to a buyer\'s cart. It is locked for {visit_window_days} days.'),
        _BROKER: ("property_lock", "Property in Buyer Cart",
                  'Property "{title}" has been added to a buyer\'s cart.'),
    },
    "VisitConfirmed": {
        _BUYER: ("visit_confirmed", "Visit Confirmed",
                 'Your visit to "{title}" has been confirmed. Booking window of {booking_window_days} days started.'),
        _SELLER: ("visit_confirmed", "Visit Confirmed",
                  'A buyer visit for "{title}" has been confirmed.'),
        _BROKER: ("visit_confirmed", "Visit Confirmed",
                  'A buyer visit for "{title}" has been confirmed.'),
    },
    "PropertyUnlocked": {
        _BUYER: ("property_unlock", "Property Removed from Cart",
                 'Property "{title}" is no longer in your cart ({reason}).'),
        _SELLER: ("property_unlock", "Property Unlocked",
                  'Property "{title}" has been removed from a buyer\'s cart ({reason}).'),
        _BROKER: ("property_unlock", "Property Unlocked",
                  'Property "{title}" has been removed from a buyer\'s cart ({reason}).'),
    },
}

class NotificationService:
    """
    Fire-and-forget sink for reservation events.

    Events are dispatched after the engine's transaction has committed and are
    persisted through a separate session, so a failure here never affects the
    reservation itself.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def dispatch(self, events: Iterable[ReservationEvent]) -> int:
        """Persist notifications for each event; returns how many were stored"""
        if not settings.NOTIFICATIONS_ENABLED:
            return 0

        stored = 0
        for event in events:
            try:
                stored += self._handle(event)
            except Exception as e:
                logger.error(
                    f"Failed to deliver {event.type} notification for property {event.property_id}: {e}",
                    exc_info=True
                )
        return stored

    def _recipients(self, event: ReservationEvent) -> List[Tuple[str, uuid.UUID]]:
        recipients = [(_BUYER, event.buyer_id), (_SELLER, event.seller_id)]
        if event.broker_id:
            recipients.append((_BROKER, event.broker_id))

        seen = set()
        unique = []
        for role, user_id in recipients:
            if user_id in seen:
                continue
            seen.add(user_id)
            unique.append((role, user_id))
        return unique

    def _handle(self, event: ReservationEvent) -> int:
        templates = MESSAGES[event.type]
        context = {"title": event.property_title, **event.data}

        db = self.session_factory()
        try:
            count = 0
            for role, user_id in self._recipients(event):
                notification_type, title, message = templates[role]
                db.add(Notification(
                    user_id=user_id,
                    type=notification_type,
                    title=title,
                    message=message.format_map(_SafeDict(context)),
                    data={
                        "event": event.type,
                        "property_id": str(event.property_id),
                        "reservation_id": str(event.reservation_id),
                        "occurred_at": event.occurred_at.isoformat(),
                    },
                    priority="high" if event.type == "VisitConfirmed" else "medium"
                ))
                count += 1
            db.commit()
            logger.debug(f"Stored {count} notifications for {event.type} on property {event.property_id}")
            return count
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ================================
    # INBOX
    # ================================

    @staticmethod
    def list_notifications(
        db: Session,
        user_id: uuid.UUID,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Notification], int]:
        """Notifications of a user, newest first, plus the unread count"""
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))

        items = query.order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()
        unread = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        ).count()
        return items, unread

    @staticmethod
    def mark_as_read(db: Session, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()
        if not notification:
            raise NotFoundError("Notification not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            db.commit()
            db.refresh(notification)
        return notification

    @staticmethod
    def mark_all_as_read(db: Session, user_id: uuid.UUID) -> int:
        updated = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        ).update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        db.commit()
        return updated

class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"

# Global notification service instance
notification_service = NotificationService()
