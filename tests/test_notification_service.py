# ================================
# NOTIFICATION SERVICE TESTS (tests/test_notification_service.py)
# ================================

import uuid

import pytest

from app.config import settings
from app.core.exceptions import NotFoundError
from app.models.cart import CartItem
from app.models.notification import Notification
from app.schemas.notification import ReservationEvent
from app.services.notification_service import NotificationService, notification_service
from app.services.reservation_engine import ReservationEngine
from tests.config import TEST_CONFIG

T0 = TEST_CONFIG["base_time"]


def _by_user(db, user):
    return db.query(Notification).filter(Notification.user_id == user.id).all()


class TestDispatch:
    """Notifications produced from reservation events"""

    def test_lock_notifies_buyer_seller_and_broker(self, db, buyer, seller, broker, live_property):
        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        buyer_notes = _by_user(db, buyer)
        assert len(buyer_notes) == 1
        assert buyer_notes[0].type == "property_added_to_cart"
        assert "Visit within 7 days" in buyer_notes[0].message
        assert live_property.title in buyer_notes[0].message

        assert [n.type for n in _by_user(db, seller)] == ["property_lock"]
        assert [n.type for n in _by_user(db, broker)] == ["property_lock"]
        assert buyer_notes[0].data["property_id"] == str(live_property.id)

    def test_without_broker_only_two_recipients(self, db, buyer, make_property):
        prop = make_property()

        ReservationEngine.reserve(db, buyer.id, prop.id, now=T0)

        assert db.query(Notification).count() == 2

    def test_release_notifies_with_reason(self, db, buyer, live_property):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        ReservationEngine.release(db, item.id, "removed", actor_id=buyer.id, now=T0)

        unlock = [n for n in _by_user(db, buyer) if n.type == "property_unlock"]
        assert len(unlock) == 1
        assert "(removed)" in unlock[0].message

    def test_visit_confirmation_is_high_priority(self, db, buyer, broker, live_property):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        ReservationEngine.confirm_visit(db, item.id, broker, now=T0)

        confirmed = [n for n in _by_user(db, buyer) if n.type == "visit_confirmed"]
        assert len(confirmed) == 1
        assert confirmed[0].priority == "high"
        assert "60 days" in confirmed[0].message

    def test_failing_sink_does_not_affect_reservation(self, db, buyer, live_property, monkeypatch):
        def broken_session():
            raise RuntimeError("mail relay down")

        monkeypatch.setattr(notification_service, "session_factory", broken_session)

        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert item.status == "active"
        assert db.query(CartItem).filter(CartItem.status == "active").count() == 1
        assert db.query(Notification).count() == 0

    def test_dispatch_swallows_failures_and_counts_stored(self, db, buyer, seller):
        calls = []

        def factory():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first delivery fails")
            return db

        service = NotificationService(session_factory=factory)
        events = [
            ReservationEvent(
                type="PropertyUnlocked",
                property_id=uuid.uuid4(),
                property_title="Flat",
                reservation_id=uuid.uuid4(),
                buyer_id=buyer.id,
                seller_id=seller.id,
                occurred_at=T0,
                data={"reason": "expired"}
            )
            for _ in range(2)
        ]

        assert service.dispatch(events) == 2

    def test_disabled_notifications_store_nothing(self, db, buyer, live_property, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)

        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert db.query(Notification).count() == 0


class TestInbox:
    """Reading and acknowledging notifications"""

    @pytest.fixture
    def inbox(self, db, buyer, make_property):
        first = make_property()
        second = make_property()
        ReservationEngine.reserve(db, buyer.id, first.id, now=T0)
        ReservationEngine.reserve(db, buyer.id, second.id, now=T0)
        return _by_user(db, buyer)

    def test_list_with_unread_count(self, db, buyer, inbox):
        items, unread = NotificationService.list_notifications(db, buyer.id)

        assert len(items) == 2
        assert unread == 2

    def test_mark_as_read(self, db, buyer, inbox):
        note = NotificationService.mark_as_read(db, inbox[0].id, buyer.id)

        assert note.is_read is True
        assert note.read_at is not None

        items, unread = NotificationService.list_notifications(db, buyer.id, unread_only=True)
        assert unread == 1
        assert [n.id for n in items] == [inbox[1].id]

    def test_cannot_read_other_users_notification(self, db, other_buyer, inbox):
        with pytest.raises(NotFoundError):
            NotificationService.mark_as_read(db, inbox[0].id, other_buyer.id)

    def test_mark_all_as_read(self, db, buyer, inbox):
        assert NotificationService.mark_all_as_read(db, buyer.id) == 2
        assert NotificationService.mark_all_as_read(db, buyer.id) == 0

        _, unread = NotificationService.list_notifications(db, buyer.id)
        assert unread == 0
