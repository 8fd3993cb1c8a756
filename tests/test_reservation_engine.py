# ================================
# RESERVATION ENGINE TESTS (tests/test_reservation_engine.py)
# ================================

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.database import SessionLocal
from app.core.exceptions import (
    AlreadyHeldError,
    AuthorizationError,
    BookingWindowExpiredError,
    CapacityExceededError,
    DuplicateReservationError,
    InvalidTransitionError,
    NotFoundError,
    PropertyUnavailableError,
    ReservationNotActiveError,
    ValidationError,
    VisitAlreadyConfirmedError,
    VisitWindowExpiredError
)
from app.models.cart import CartItem
from app.models.commission import Commission
from app.models.property import Property
from app.schemas.rule import RuleUpsert
from app.services.commission_service import CommissionService
from app.services.property_service import PropertyService
from app.services.reservation_engine import ReservationEngine
from app.services.rule_service import RuleService
from app.utils import ensure_utc
from tests.config import TEST_CONFIG

T0 = TEST_CONFIG["base_time"]

def _fresh_property(db, property_id) -> Property:
    return db.get(Property, property_id, populate_existing=True)

def _active_items(db, property_id=None, buyer_id=None):
    query = db.query(CartItem).filter(CartItem.status == "active")
    if property_id:
        query = query.filter(CartItem.property_id == property_id)
    if buyer_id:
        query = query.filter(CartItem.buyer_id == buyer_id)
    return query.all()


class TestReserve:
    """Putting properties into a buyer's cart"""

    def test_reserve_locks_property(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert item.status == "active"
        assert item.visit_status == "pending"
        assert ensure_utc(item.reserved_at) == T0

        prop = _fresh_property(db, live_property.id)
        assert prop.lock_held is True
        assert prop.lock_holder_id == buyer.id
        assert prop.lock_reservation_id == item.id
        assert prop.lock_visit_confirmed is False

        assert [e.type for e in events] == ["PropertyLocked"]
        assert events[0].buyer_id == buyer.id
        assert events[0].seller_id == live_property.seller_id
        assert events[0].broker_id == live_property.broker_id
        assert events[0].data["visit_window_days"] == 7

    def test_second_buyer_gets_already_held(self, db, buyer, other_buyer, live_property, events):
        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(AlreadyHeldError) as exc:
            ReservationEngine.reserve(db, other_buyer.id, live_property.id, now=T0 + timedelta(hours=1))

        assert exc.value.status_code == 409
        assert exc.value.error_code == "ALREADY_HELD"
        assert len(_active_items(db, property_id=live_property.id)) == 1
        assert _fresh_property(db, live_property.id).lock_holder_id == buyer.id

    def test_same_buyer_twice_is_duplicate(self, db, buyer, live_property, events):
        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(DuplicateReservationError):
            ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert len(_active_items(db, buyer_id=buyer.id)) == 1

    def test_non_live_property_unavailable(self, db, buyer, make_property, events):
        prop = make_property(status="approved")

        with pytest.raises(PropertyUnavailableError):
            ReservationEngine.reserve(db, buyer.id, prop.id, now=T0)

        assert _fresh_property(db, prop.id).lock_held is False
        assert events == []

    def test_only_buyers_can_reserve(self, db, seller, live_property, events):
        with pytest.raises(AuthorizationError):
            ReservationEngine.reserve(db, seller.id, live_property.id, now=T0)

    def test_unknown_property(self, db, buyer, events):
        with pytest.raises(NotFoundError):
            ReservationEngine.reserve(db, buyer.id, uuid.uuid4(), now=T0)

    def test_expired_holder_is_released_on_reserve(self, db, buyer, other_buyer, live_property, events):
        """A stale holder does not block the next buyer"""
        first = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        later = T0 + timedelta(days=8)
        second = ReservationEngine.reserve(db, other_buyer.id, live_property.id, now=later)

        db.refresh(first)
        assert first.status == "expired"
        assert first.visit_status == "expired"
        assert _fresh_property(db, live_property.id).lock_holder_id == other_buyer.id
        assert second.status == "active"
        assert [e.type for e in events] == ["PropertyLocked", "PropertyUnlocked", "PropertyLocked"]

    def test_stale_mirror_without_item_is_repaired(self, db, buyer, other_buyer, live_property, events):
        """Mirror claiming a lock with no active item is cleared, the item wins"""
        PropertyService.update_lock(db, live_property.id, {
            "lock_held": True,
            "lock_holder_id": other_buyer.id,
            "lock_reservation_id": uuid.uuid4(),
        })
        db.commit()

        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        prop = _fresh_property(db, live_property.id)
        assert prop.lock_reservation_id == item.id
        assert prop.lock_holder_id == buyer.id


class TestCapacity:
    """Cart size limit per buyer"""

    def test_sixth_reserve_exceeds_capacity(self, db, buyer, make_property, events):
        props = [make_property() for _ in range(6)]
        for prop in props[:5]:
            ReservationEngine.reserve(db, buyer.id, prop.id, now=T0)

        with pytest.raises(CapacityExceededError) as exc:
            ReservationEngine.reserve(db, buyer.id, props[5].id, now=T0)

        assert exc.value.error_code == "CAPACITY_EXCEEDED"
        assert "limit reached" in exc.value.detail
        assert len(_active_items(db, buyer_id=buyer.id)) == 5
        assert _fresh_property(db, props[5].id).lock_held is False
        assert len(events) == 5

    def test_capacity_follows_rule(self, db, admin, buyer, make_property, events):
        RuleService.upsert_rule(db, RuleUpsert(
            rule_type="cart_max_properties",
            name="Small carts",
            value=2,
            conditions={"userType": "buyer"},
            priority=10
        ), admin.id)
        props = [make_property() for _ in range(3)]
        ReservationEngine.reserve(db, buyer.id, props[0].id, now=T0)
        ReservationEngine.reserve(db, buyer.id, props[1].id, now=T0)

        with pytest.raises(CapacityExceededError) as exc:
            ReservationEngine.reserve(db, buyer.id, props[2].id, now=T0)
        assert exc.value.max_properties == 2

    def test_released_items_free_capacity(self, db, buyer, make_property, events):
        props = [make_property() for _ in range(6)]
        items = [ReservationEngine.reserve(db, buyer.id, p.id, now=T0) for p in props[:5]]

        ReservationEngine.release(db, items[0].id, "removed", actor_id=buyer.id, now=T0)
        item = ReservationEngine.reserve(db, buyer.id, props[5].id, now=T0)

        assert item.status == "active"
        assert len(_active_items(db, buyer_id=buyer.id)) == 5


class TestMutualExclusion:
    """At most one active reservation per property"""

    def test_partial_unique_index_rejects_second_active_item(self, db, buyer, other_buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        cart = ReservationEngine._get_or_create_cart(db, other_buyer.id)

        db.add(CartItem(
            cart_id=cart.id,
            buyer_id=other_buyer.id,
            property_id=live_property.id,
            status="active",
            visit_status="pending",
            reserved_at=T0
        ))
        with pytest.raises(IntegrityError):
            db.flush()
        db.rollback()

        db.add(CartItem(
            cart_id=cart.id,
            buyer_id=other_buyer.id,
            property_id=live_property.id,
            status="expired",
            visit_status="expired",
            reserved_at=T0
        ))
        db.commit()
        assert [i.id for i in _active_items(db, property_id=live_property.id)] == [item.id]

    def test_concurrent_reserves_have_one_winner(self, test_engine, buyer, other_buyer, live_property, events, monkeypatch):
        """B passes its checks, A reserves and commits, then B writes and loses"""
        session_a = SessionLocal()
        session_b = SessionLocal()
        original = ReservationEngine._get_or_create_cart
        winner = {}

        def interleaved(db, buyer_id):
            if db is session_b and "item" not in winner:
                winner["item"] = ReservationEngine.reserve(session_a, buyer.id, live_property.id, now=T0)
            return original(db, buyer_id)

        monkeypatch.setattr(ReservationEngine, "_get_or_create_cart", interleaved)

        try:
            with pytest.raises(AlreadyHeldError):
                ReservationEngine.reserve(session_b, other_buyer.id, live_property.id, now=T0)

            check = SessionLocal()
            try:
                active = _active_items(check, property_id=live_property.id)
                assert [i.id for i in active] == [winner["item"].id]
                prop = _fresh_property(check, live_property.id)
                assert prop.lock_holder_id == buyer.id
                assert prop.lock_reservation_id == winner["item"].id
            finally:
                check.close()
        finally:
            session_a.close()
            session_b.close()

        assert [e.type for e in events] == ["PropertyLocked"]

    def test_conditional_lock_refuses_held_property(self, db, buyer, live_property):
        assert PropertyService.acquire_lock(db, live_property.id, buyer.id, uuid.uuid4(), T0) is True
        assert PropertyService.acquire_lock(db, live_property.id, buyer.id, uuid.uuid4(), T0) is False
        db.rollback()


class TestRelease:
    """Removing and expiring reservations"""

    def test_release_clears_lock(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert ReservationEngine.release(db, item.id, "removed", actor_id=buyer.id, now=T0) is True

        db.refresh(item)
        assert item.status == "removed"
        assert item.visit_status == "cancelled"
        assert item.release_reason == "removed"
        prop = _fresh_property(db, live_property.id)
        assert prop.lock_held is False
        assert prop.lock_holder_id is None
        assert prop.lock_reservation_id is None

    def test_release_is_idempotent(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert ReservationEngine.release(db, item.id, "removed", now=T0) is True
        assert ReservationEngine.release(db, item.id, "removed", now=T0) is False
        assert ReservationEngine.release(db, item.id, "expired", now=T0) is False

        assert [e.type for e in events] == ["PropertyLocked", "PropertyUnlocked"]
        db.refresh(item)
        assert item.status == "removed"

    def test_release_rejects_unknown_reason(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        with pytest.raises(ValidationError):
            ReservationEngine.release(db, item.id, "purchased", now=T0)

    def test_remove_after_visit_window_expires_instead(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        released = ReservationEngine.release(
            db, item.id, "removed", actor_id=buyer.id, now=T0 + timedelta(days=9)
        )

        assert released is False
        db.refresh(item)
        assert item.status == "expired"
        assert item.visit_status == "expired"
        assert item.release_reason == "expired"
        assert _fresh_property(db, live_property.id).lock_held is False
        assert [e.type for e in events] == ["PropertyLocked", "PropertyUnlocked"]
        assert events[-1].data["reason"] == "expired"

    def test_admin_remove_after_booking_window_expires_instead(self, db, admin, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

        released = ReservationEngine.release(
            db, item.id, "removed", actor_id=admin.id, now=T0 + timedelta(days=62)
        )

        assert released is False
        db.refresh(item)
        assert item.status == "expired"
        assert item.release_reason == "expired"
        assert ReservationEngine.release(db, item.id, "removed", actor_id=admin.id, now=T0) is False

    def test_remove_inside_window_still_removes(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert ReservationEngine.release(db, item.id, "removed", now=T0 + timedelta(days=7)) is True
        db.refresh(item)
        assert item.status == "removed"

    def test_released_property_can_be_reserved_again(self, db, buyer, other_buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.release(db, item.id, "removed", now=T0)

        again = ReservationEngine.reserve(db, other_buyer.id, live_property.id, now=T0)
        assert _fresh_property(db, live_property.id).lock_reservation_id == again.id


class TestVisitWindow:
    """Unconfirmed reservations expire after the visit window"""

    def test_expire_if_due_respects_inclusive_deadline(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        deadline = T0 + timedelta(days=7)

        assert ReservationEngine.expire_if_due(db, item, now=deadline) is False
        assert ReservationEngine.expire_if_due(db, item, now=deadline + timedelta(seconds=1)) is True

        db.refresh(item)
        assert item.status == "expired"
        assert item.visit_status == "expired"
        assert _fresh_property(db, live_property.id).lock_held is False

    def test_confirm_on_last_day_succeeds(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        confirmed = ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=7))
        assert confirmed.visit_status == "confirmed"

    def test_confirm_after_window_expires_item(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(VisitWindowExpiredError) as exc:
            ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=7, seconds=1))

        assert exc.value.status_code == 410
        assert "window has expired" in exc.value.detail
        db.refresh(item)
        assert item.status == "expired"
        assert _fresh_property(db, live_property.id).lock_held is False
        assert db.query(Commission).count() == 0


class TestConfirmVisit:
    """Visit confirmation opens the booking window"""

    def test_broker_confirmation_opens_booking_window(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        t3 = T0 + timedelta(days=3)

        confirmed = ReservationEngine.confirm_visit(db, item.id, broker, method="otp", now=t3)

        assert confirmed.visit_status == "confirmed"
        assert confirmed.confirmed_by_id == broker.id
        assert confirmed.confirmed_by_role == "broker"
        assert confirmed.confirmation_method == "otp"
        assert ensure_utc(confirmed.booking_window_start) == t3
        assert ensure_utc(confirmed.booking_window_end) == t3 + timedelta(days=60)

        prop = _fresh_property(db, live_property.id)
        assert prop.lock_visit_confirmed is True
        assert prop.lock_confirmed_by_id == broker.id
        assert prop.lock_confirmation_method == "otp"
        assert ensure_utc(prop.lock_booking_window_end) == t3 + timedelta(days=60)

        assert events[-1].type == "VisitConfirmed"
        assert events[-1].data["booking_window_days"] == 60

    def test_seller_commission_recorded_once(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=3))

        with pytest.raises(VisitAlreadyConfirmedError):
            ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=4))

        commissions = db.query(Commission).all()
        assert len(commissions) == 1
        commission = commissions[0]
        assert commission.commission_type == "seller"
        assert commission.broker_id == broker.id
        assert commission.reservation_id == item.id
        assert commission.status == "pending"
        assert commission.rate == Decimal("2.00")
        assert commission.amount == Decimal("20000.00")

    def test_duplicate_commission_for_reservation_is_rejected(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

        with pytest.raises(IntegrityError):
            CommissionService.record_commission(
                db, broker.id, live_property, "seller", 2, reservation_id=item.id
            )
        db.rollback()
        assert db.query(Commission).count() == 1

    def test_property_seller_rate_overrides_rule(self, db, buyer, broker, make_property, events):
        prop = make_property(broker=broker, seller_rate=Decimal("3.00"))
        item = ReservationEngine.reserve(db, buyer.id, prop.id, now=T0)

        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

        commission = db.query(Commission).one()
        assert commission.rate == Decimal("3.00")
        assert commission.amount == Decimal("30000.00")

    def test_no_seller_commission_when_broker_is_adder(self, db, admin, seller, buyer, broker, events):
        from app.schemas.property import PropertyCreate

        prop = PropertyService.create_property(db, PropertyCreate(
            title="Broker listed villa",
            price=Decimal("1000000.00"),
            seller_id=seller.id
        ), broker)
        PropertyService.approve_property(db, prop.id, admin, go_live=True)

        item = ReservationEngine.reserve(db, buyer.id, prop.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=2))

        types = sorted(c.commission_type for c in db.query(Commission).all())
        assert types == ["adder"]

    def test_buyer_and_admin_confirmations_record_no_commission(self, db, admin, buyer, other_buyer, make_property, broker, events):
        first = make_property(broker=broker)
        second = make_property(broker=broker)
        item_a = ReservationEngine.reserve(db, buyer.id, first.id, now=T0)
        item_b = ReservationEngine.reserve(db, other_buyer.id, second.id, now=T0)

        ReservationEngine.confirm_visit(db, item_a.id, buyer, method="qr", now=T0 + timedelta(days=1))
        ReservationEngine.confirm_visit(db, item_b.id, admin, now=T0 + timedelta(days=1))

        assert db.query(Commission).count() == 0

    def test_unassigned_broker_cannot_confirm(self, db, buyer, other_broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(AuthorizationError):
            ReservationEngine.confirm_visit(db, item.id, other_broker, now=T0 + timedelta(days=1))

        db.refresh(item)
        assert item.visit_status == "pending"

    def test_other_buyer_cannot_confirm(self, db, buyer, other_buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(AuthorizationError):
            ReservationEngine.confirm_visit(db, item.id, other_buyer, now=T0 + timedelta(days=1))

    def test_confirm_released_item_fails(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.release(db, item.id, "removed", now=T0)

        with pytest.raises(ReservationNotActiveError):
            ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

    def test_unknown_method_rejected(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        with pytest.raises(ValidationError):
            ReservationEngine.confirm_visit(db, item.id, broker, method="fax", now=T0)

    def test_failed_commission_leaves_no_partial_state(self, db, buyer, broker, live_property, events, monkeypatch):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        def broken(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(CommissionService, "record_commission", broken)

        with pytest.raises(RuntimeError):
            ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

        db.refresh(item)
        assert item.visit_status == "pending"
        assert item.booking_window_end is None
        prop = _fresh_property(db, live_property.id)
        assert prop.lock_held is True
        assert prop.lock_visit_confirmed is False
        assert [e.type for e in events] == ["PropertyLocked"]


class TestBookingWindow:
    """Confirmed reservations expire after the booking window"""

    def test_booking_window_replaces_visit_window(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        t3 = T0 + timedelta(days=3)
        ReservationEngine.confirm_visit(db, item.id, broker, now=t3)

        # Long past the visit window, still inside the booking window
        assert ReservationEngine.expire_if_due(db, item, now=T0 + timedelta(days=30)) is False

        end = t3 + timedelta(days=60)
        assert ReservationEngine.expire_if_due(db, item, now=end) is False
        assert ReservationEngine.expire_if_due(db, item, now=end + timedelta(seconds=1)) is True

        db.refresh(item)
        assert item.status == "expired"
        assert item.visit_status == "confirmed"
        assert _fresh_property(db, live_property.id).lock_held is False


class TestScheduleVisit:
    """Booking a visit slot"""

    def test_schedule_inside_window(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        scheduled = ReservationEngine.schedule_visit(
            db, item.id, buyer.id,
            scheduled_date=T0 + timedelta(days=2),
            scheduled_time="10:30",
            visit_type="virtual",
            phone_number="+91 98765 43210",
            now=T0 + timedelta(hours=1)
        )

        assert scheduled.visit_status == "scheduled"
        assert scheduled.scheduled_time == "10:30"
        assert scheduled.visit_type == "virtual"
        assert ensure_utc(scheduled.scheduled_date) == T0 + timedelta(days=2)

    def test_reschedule_is_allowed(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.schedule_visit(db, item.id, buyer.id, T0 + timedelta(days=2), now=T0)

        again = ReservationEngine.schedule_visit(db, item.id, buyer.id, T0 + timedelta(days=5), now=T0)
        assert ensure_utc(again.scheduled_date) == T0 + timedelta(days=5)

    def test_date_after_deadline_rejected(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(ValidationError):
            ReservationEngine.schedule_visit(db, item.id, buyer.id, T0 + timedelta(days=8), now=T0)

    def test_date_in_past_rejected(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(ValidationError):
            ReservationEngine.schedule_visit(
                db, item.id, buyer.id, T0 + timedelta(hours=1), now=T0 + timedelta(days=1)
            )

    def test_schedule_after_window_expires_item(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(VisitWindowExpiredError):
            ReservationEngine.schedule_visit(
                db, item.id, buyer.id, T0 + timedelta(days=9), now=T0 + timedelta(days=8)
            )
        db.refresh(item)
        assert item.status == "expired"

    def test_other_buyers_reservation_not_found(self, db, buyer, other_buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(NotFoundError):
            ReservationEngine.schedule_visit(db, item.id, other_buyer.id, T0 + timedelta(days=1), now=T0)

    def test_confirmed_visit_cannot_be_rescheduled(self, db, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=1))

        with pytest.raises(VisitAlreadyConfirmedError):
            ReservationEngine.schedule_visit(
                db, item.id, buyer.id, T0 + timedelta(days=3), now=T0 + timedelta(days=2)
            )


class TestCompletePurchase:
    """Finalizing a sale inside the booking window"""

    def test_purchase_marks_property_sold(self, db, admin, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0 + timedelta(days=2))

        purchased = ReservationEngine.complete_purchase(db, item.id, admin, now=T0 + timedelta(days=20))

        assert purchased.status == "purchased"
        assert purchased.visit_status == "completed"
        prop = _fresh_property(db, live_property.id)
        assert prop.status == "sold"
        assert prop.lock_held is False
        assert events[-1].type == "PropertyUnlocked"

    def test_purchase_requires_confirmed_visit(self, db, admin, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        with pytest.raises(InvalidTransitionError):
            ReservationEngine.complete_purchase(db, item.id, admin, now=T0 + timedelta(days=1))

    def test_purchase_after_booking_window_fails(self, db, admin, buyer, broker, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        ReservationEngine.confirm_visit(db, item.id, broker, now=T0)

        with pytest.raises(BookingWindowExpiredError):
            ReservationEngine.complete_purchase(db, item.id, admin, now=T0 + timedelta(days=61))

        db.refresh(item)
        assert item.status == "expired"
        prop = _fresh_property(db, live_property.id)
        assert prop.status == "live"
        assert prop.lock_held is False


class TestLockStatus:
    """Lock view and drift repair"""

    def test_lock_status_expires_stale_holder(self, db, buyer, live_property, events):
        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)

        assert ReservationEngine.get_lock_status(db, live_property.id, now=T0)["held"] is True
        status = ReservationEngine.get_lock_status(db, live_property.id, now=T0 + timedelta(days=8))
        assert status["held"] is False
        assert status["holder_id"] is None

    def test_reconcile_restores_missing_mirror(self, db, buyer, live_property, events):
        item = ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        PropertyService.clear_lock(db, live_property.id)
        db.commit()

        prop = _fresh_property(db, live_property.id)
        assert ReservationEngine.reconcile_property_lock(db, prop) is True
        db.commit()

        prop = _fresh_property(db, live_property.id)
        assert prop.lock_held is True
        assert prop.lock_reservation_id == item.id
        assert ReservationEngine.reconcile_property_lock(db, prop) is False

    def test_reconcile_keeps_lock_taken_meanwhile(
        self, db, test_engine, buyer, other_buyer, live_property, events, monkeypatch
    ):
        """A reserve committed between the item lookup and the clear keeps its lock"""
        PropertyService.update_lock(db, live_property.id, {
            "lock_held": True,
            "lock_holder_id": other_buyer.id,
            "lock_reservation_id": uuid.uuid4(),
        })
        db.commit()

        original = ReservationEngine._active_item_for_property
        winner = {}

        def lookup_then_reserve(session, property_id):
            found = original(session, property_id)
            if session is db and "id" not in winner:
                other = SessionLocal()
                try:
                    PropertyService.clear_lock(other, property_id)
                    other.commit()
                    winner["id"] = ReservationEngine.reserve(other, buyer.id, property_id, now=T0).id
                finally:
                    other.close()
            return found

        monkeypatch.setattr(ReservationEngine, "_active_item_for_property", lookup_then_reserve)

        repaired = ReservationEngine.reconcile_property_lock(db, _fresh_property(db, live_property.id))
        db.commit()

        assert repaired is False
        prop = _fresh_property(db, live_property.id)
        assert prop.lock_held is True
        assert prop.lock_reservation_id == winner["id"]
        assert prop.lock_holder_id == buyer.id

    def test_reconcile_clears_lock_without_reservation_id(self, db, buyer, live_property):
        PropertyService.update_lock(db, live_property.id, {"lock_held": True, "lock_holder_id": buyer.id})
        db.commit()

        assert ReservationEngine.reconcile_property_lock(db, _fresh_property(db, live_property.id)) is True
        db.commit()

        assert _fresh_property(db, live_property.id).lock_held is False

    def test_reconcile_logs_drift_warning(self, db, buyer, live_property, events, caplog):
        ReservationEngine.reserve(db, buyer.id, live_property.id, now=T0)
        PropertyService.update_lock(db, live_property.id, {"lock_visit_confirmed": True})
        db.commit()

        with caplog.at_level("WARNING", logger="app.services.reservation_engine"):
            repaired = ReservationEngine.reconcile_property_lock(db, _fresh_property(db, live_property.id))

        assert repaired is True
        assert any("Lock drift" in record.message for record in caplog.records)


class TestCart:
    """Cart listing"""

    def test_get_cart_expires_stale_items(self, db, buyer, make_property, events):
        fresh = make_property()
        stale = make_property()
        ReservationEngine.reserve(db, buyer.id, stale.id, now=T0)
        ReservationEngine.reserve(db, buyer.id, fresh.id, now=T0 + timedelta(days=5))

        items, rules = ReservationEngine.get_cart(db, buyer.id, now=T0 + timedelta(days=8))
        assert [i.property_id for i in items] == [fresh.id]
        assert rules.max_properties == 5

        history, _ = ReservationEngine.get_cart(
            db, buyer.id, now=T0 + timedelta(days=8), include_history=True
        )
        assert {i.status for i in history} == {"active", "expired"}
