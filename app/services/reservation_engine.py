# ================================
# RESERVATION ENGINE (services/reservation_engine.py)
# ================================

"""
Cart reservation state machine.

A cart item is the source of truth for a reservation; the property's lock
columns mirror the single active item that references it. Every transition
writes the item first and the mirror second inside one transaction, and
events are handed to the notification service only after commit.

    reserve -> active/pending
    schedule_visit -> active/scheduled
    confirm_visit -> active/confirmed (booking window opens)
    release(removed | expired), complete_purchase -> terminal
"""

from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, timedelta
from sqlalchemy import update, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging
import uuid

from app.models.cart import Cart, CartItem, CONFIRMATION_METHODS
from app.models.property import Property
from app.models.user import User
from app.schemas.notification import ReservationEvent
from app.schemas.rule import ReservationRules
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
from app.services.commission_service import CommissionService
from app.services.notification_service import notification_service
from app.services.property_service import PropertyService
from app.services.rule_service import RuleService
from app.utils import utcnow, ensure_utc
from app.utils.audit import AuditLogger

logger = logging.getLogger(__name__)
audit_logger = AuditLogger()

RELEASE_REASONS = ("removed", "expired")

class ReservationEngine:
    """Owns cart items and the property lock mirror"""

    # ================================
    # HELPERS
    # ================================

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else utcnow()

    @staticmethod
    def visit_deadline(item: CartItem, rules: ReservationRules) -> datetime:
        return ensure_utc(item.reserved_at) + timedelta(days=rules.visit_window_days)

    @staticmethod
    def expires_at(item: CartItem, rules: ReservationRules) -> datetime:
        """Moment after which an active item is stale"""
        if item.visit_status == "confirmed":
            if item.booking_window_end is not None:
                return ensure_utc(item.booking_window_end)
            confirmed_at = ensure_utc(item.visit_confirmed_at or item.reserved_at)
            return confirmed_at + timedelta(days=rules.booking_window_days)
        return ReservationEngine.visit_deadline(item, rules)

    @staticmethod
    def _mirror_values(item: CartItem) -> Dict[str, Any]:
        """Lock columns as derived from an active item"""
        return {
            "lock_held": True,
            "lock_holder_id": item.buyer_id,
            "lock_reservation_id": item.id,
            "lock_reserved_at": item.reserved_at,
            "lock_visit_confirmed": item.visit_status == "confirmed",
            "lock_visit_confirmed_at": item.visit_confirmed_at,
            "lock_confirmed_by_id": item.confirmed_by_id,
            "lock_confirmed_by_role": item.confirmed_by_role,
            "lock_confirmation_method": item.confirmation_method,
            "lock_booking_window_start": item.booking_window_start,
            "lock_booking_window_end": item.booking_window_end,
        }

    @staticmethod
    def _event(
        event_type: str,
        item: CartItem,
        prop: Property,
        now: datetime,
        **data
    ) -> ReservationEvent:
        return ReservationEvent(
            type=event_type,
            property_id=prop.id,
            property_title=prop.title,
            reservation_id=item.id,
            buyer_id=item.buyer_id,
            seller_id=prop.seller_id,
            broker_id=prop.broker_id,
            occurred_at=now,
            data=data
        )

    @staticmethod
    def _commit_and_dispatch(db: Session, events: List[ReservationEvent]) -> None:
        db.commit()
        if events:
            notification_service.dispatch(events)

    @staticmethod
    def get_reservation(db: Session, reservation_id: uuid.UUID, fresh: bool = True) -> CartItem:
        item = db.get(CartItem, reservation_id, populate_existing=fresh)
        if not item:
            raise NotFoundError("Reservation not found")
        return item

    @staticmethod
    def _active_item_for_property(db: Session, property_id: uuid.UUID) -> Optional[CartItem]:
        return db.query(CartItem).filter(
            CartItem.property_id == property_id,
            CartItem.status == "active"
        ).populate_existing().first()

    # ================================
    # RELEASE / EXPIRY
    # ================================

    @staticmethod
    def _release(
        db: Session,
        item: CartItem,
        reason: str,
        now: datetime,
        actor_id: Optional[uuid.UUID] = None,
        final_status: Optional[str] = None
    ) -> Optional[ReservationEvent]:
        """
        Move an active item to a terminal status and clear the mirror.
        Returns the unlock event, or None when another caller got there first.
        Does not commit.
        """
        status = final_status or reason
        if item.visit_status == "confirmed":
            visit_status = "completed" if status == "purchased" else item.visit_status
        else:
            visit_status = "expired" if reason == "expired" else "cancelled"

        result = db.execute(
            update(CartItem)
            .where(CartItem.id == item.id, CartItem.status == "active")
            .values(
                status=status,
                visit_status=visit_status,
                released_at=now,
                release_reason=reason
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug(f"Reservation {item.id} already released")
            return None

        if not PropertyService.clear_lock(db, item.property_id, reservation_id=item.id):
            logger.warning(
                f"Lock drift: property {item.property_id} was not held by reservation {item.id} at release"
            )

        db.refresh(item)
        prop = db.get(Property, item.property_id, populate_existing=True)

        audit_logger.log_business_event(
            db=db,
            action="PROPERTY_UNLOCKED",
            user_id=actor_id,
            resource_type="cart_item",
            resource_id=item.id,
            old_values={"status": "active"},
            new_values={"status": status, "reason": reason, "property_id": item.property_id}
        )
        logger.info(f"Released reservation {item.id} on property {item.property_id} ({status})")

        return ReservationEngine._event("PropertyUnlocked", item, prop, now, reason=reason)

    @staticmethod
    def release(
        db: Session,
        reservation_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Release an active reservation. Idempotent: returns False and emits
        nothing when the item is already terminal. An item whose window has
        already passed is expired instead of removed, and False is returned.
        """
        if reason not in RELEASE_REASONS:
            raise ValidationError(f"Release reason must be one of {', '.join(RELEASE_REASONS)}")

        now = ReservationEngine._now(now)
        item = ReservationEngine.get_reservation(db, reservation_id)
        if item.status != "active":
            return False

        if reason == "removed" and ReservationEngine.expire_if_due(db, item, now=now):
            logger.info(f"Reservation {item.id} was past its window at removal, expired instead")
            return False

        try:
            event = ReservationEngine._release(db, item, reason, now, actor_id=actor_id)
        except Exception:
            db.rollback()
            raise

        if event is None:
            db.rollback()
            return False

        ReservationEngine._commit_and_dispatch(db, [event])
        return True

    @staticmethod
    def expire_if_due(
        db: Session,
        item: CartItem,
        now: Optional[datetime] = None,
        rules: Optional[ReservationRules] = None
    ) -> bool:
        """
        Expire an active item whose visit window (unconfirmed) or booking
        window (confirmed) has passed. Shared by every interactive path and
        the sweeper. Commits when it releases.
        """
        if item.status != "active":
            return False

        now = ReservationEngine._now(now)
        rules = rules or RuleService.get_reservation_rules(db)

        if now <= ReservationEngine.expires_at(item, rules):
            return False

        try:
            event = ReservationEngine._release(db, item, "expired", now)
        except Exception:
            db.rollback()
            raise

        if event is None:
            db.rollback()
            return False

        ReservationEngine._commit_and_dispatch(db, [event])
        return True

    # ================================
    # RECONCILIATION
    # ================================

    @staticmethod
    def reconcile_property_lock(db: Session, prop: Property) -> bool:
        """
        Make the property mirror agree with its active item, which wins.
        Returns True when a repair was written. Does not commit.
        """
        db.refresh(prop)
        item = ReservationEngine._active_item_for_property(db, prop.id)

        if item is None:
            if not prop.lock_held and prop.lock_reservation_id is None:
                return False
            stale_reservation_id = prop.lock_reservation_id
            logger.warning(
                f"Lock drift on property {prop.id}: lock held by reservation "
                f"{stale_reservation_id} without an active item, clearing"
            )
            # Only the lock we just read; a reserve committed meanwhile keeps its own
            cleared = PropertyService.clear_lock(db, prop.id, reservation_id=stale_reservation_id, match_unowned=True)
            db.refresh(prop)
            if not cleared:
                logger.info(f"Lock on property {prop.id} changed during reconciliation, left as is")
            return cleared

        expected = ReservationEngine._mirror_values(item)
        current = {
            "lock_held": bool(prop.lock_held),
            "lock_holder_id": prop.lock_holder_id,
            "lock_reservation_id": prop.lock_reservation_id,
            "lock_visit_confirmed": bool(prop.lock_visit_confirmed),
            "lock_booking_window_end": ensure_utc(prop.lock_booking_window_end),
        }
        wanted = {
            key: ensure_utc(value) if isinstance(value, datetime) else value
            for key, value in expected.items()
            if key in current
        }
        if current == wanted:
            return False

        logger.warning(
            f"Lock drift on property {prop.id}: mirror {current} disagrees with "
            f"reservation {item.id}, rewriting from the item"
        )
        PropertyService.update_lock(db, prop.id, expected)
        db.refresh(prop)
        return True

    @staticmethod
    def _heal_property(
        db: Session,
        prop: Property,
        now: datetime,
        rules: ReservationRules
    ) -> None:
        """Expire a stale holder and repair drift before acting on a property"""
        holder = ReservationEngine._active_item_for_property(db, prop.id)
        if holder is not None:
            ReservationEngine.expire_if_due(db, holder, now=now, rules=rules)

        if ReservationEngine.reconcile_property_lock(db, prop):
            db.commit()

    @staticmethod
    def _heal_buyer(
        db: Session,
        buyer_id: uuid.UUID,
        now: datetime,
        rules: ReservationRules
    ) -> None:
        items = db.query(CartItem).filter(
            CartItem.buyer_id == buyer_id,
            CartItem.status == "active"
        ).populate_existing().all()
        for item in items:
            ReservationEngine.expire_if_due(db, item, now=now, rules=rules)

    # ================================
    # RESERVE
    # ================================

    @staticmethod
    def _get_or_create_cart(db: Session, buyer_id: uuid.UUID) -> Cart:
        cart = db.query(Cart).filter(Cart.buyer_id == buyer_id).with_for_update().first()
        if cart:
            return cart

        try:
            cart = Cart(buyer_id=buyer_id)
            db.add(cart)
            db.commit()
        except IntegrityError:
            # Created concurrently by another request of the same buyer
            db.rollback()
        return db.query(Cart).filter(Cart.buyer_id == buyer_id).with_for_update().one()

    @staticmethod
    def reserve(
        db: Session,
        buyer_id: uuid.UUID,
        property_id: uuid.UUID,
        now: Optional[datetime] = None
    ) -> CartItem:
        """Put a live property into the buyer's cart and lock it"""
        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)

        buyer = db.get(User, buyer_id)
        if not buyer or buyer.role != "buyer":
            raise AuthorizationError("Only buyers can reserve properties")

        prop = PropertyService.get_property(db, property_id, fresh=True)
        if prop.status != "live":
            raise PropertyUnavailableError()

        ReservationEngine._heal_property(db, prop, now, rules)
        ReservationEngine._heal_buyer(db, buyer_id, now, rules)
        db.refresh(prop)

        own = db.query(CartItem).filter(
            CartItem.buyer_id == buyer_id,
            CartItem.property_id == property_id,
            CartItem.status == "active"
        ).first()
        if own is not None:
            raise DuplicateReservationError()

        if prop.lock_held:
            raise AlreadyHeldError()

        cart = ReservationEngine._get_or_create_cart(db, buyer_id)

        active_count = db.query(func.count(CartItem.id)).filter(
            CartItem.buyer_id == buyer_id,
            CartItem.status == "active"
        ).scalar()
        if active_count >= rules.max_properties:
            db.rollback()
            raise CapacityExceededError(rules.max_properties)

        item = CartItem(
            id=uuid.uuid4(),
            cart_id=cart.id,
            buyer_id=buyer_id,
            property_id=property_id,
            status="active",
            visit_status="pending",
            reserved_at=now
        )

        try:
            db.add(item)
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info(f"Reserve of property {property_id} by buyer {buyer_id} lost to a concurrent holder")
            raise AlreadyHeldError()

        if not PropertyService.acquire_lock(db, property_id, buyer_id, item.id, now):
            db.rollback()
            logger.info(f"Lock on property {property_id} already taken, buyer {buyer_id} refused")
            raise AlreadyHeldError()

        audit_logger.log_business_event(
            db=db,
            action="PROPERTY_LOCKED",
            user_id=buyer_id,
            resource_type="cart_item",
            resource_id=item.id,
            new_values={"property_id": property_id, "reserved_at": now}
        )

        event = ReservationEngine._event(
            "PropertyLocked", item, prop, now,
            visit_window_days=rules.visit_window_days
        )
        ReservationEngine._commit_and_dispatch(db, [event])
        db.refresh(item)

        logger.info(f"Buyer {buyer_id} reserved property {property_id} (reservation {item.id})")
        return item

    # ================================
    # VISIT
    # ================================

    @staticmethod
    def _check_visit_window(
        db: Session,
        item: CartItem,
        now: datetime,
        rules: ReservationRules
    ) -> None:
        """Expire and fail when the visit deadline has passed"""
        if now > ReservationEngine.visit_deadline(item, rules):
            ReservationEngine.expire_if_due(db, item, now=now, rules=rules)
            raise VisitWindowExpiredError(rules.visit_window_days)

    @staticmethod
    def _can_confirm(item: CartItem, prop: Property, user: User) -> bool:
        if user.role == "admin":
            return True
        if user.role == "broker":
            return prop.broker_id == user.id
        if user.role == "buyer":
            return item.buyer_id == user.id
        return False

    @staticmethod
    def schedule_visit(
        db: Session,
        reservation_id: uuid.UUID,
        buyer_id: uuid.UUID,
        scheduled_date: datetime,
        scheduled_time: Optional[str] = None,
        visit_type: str = "in_person",
        phone_number: Optional[str] = None,
        notes: Optional[str] = None,
        special_requests: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CartItem:
        """Book a visit slot inside the visit window"""
        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)
        item = ReservationEngine.get_reservation(db, reservation_id)

        if item.buyer_id != buyer_id:
            raise NotFoundError("Reservation not found")
        if item.status != "active":
            raise ReservationNotActiveError(item.status)
        if item.visit_status == "confirmed":
            raise VisitAlreadyConfirmedError()

        ReservationEngine._check_visit_window(db, item, now, rules)

        scheduled_date = ensure_utc(scheduled_date)
        if scheduled_date < now:
            raise ValidationError("Visit date must be in the future")
        if scheduled_date > ReservationEngine.visit_deadline(item, rules):
            raise ValidationError(
                f"Visit must take place within the {rules.visit_window_days}-day visit window"
            )

        result = db.execute(
            update(CartItem)
            .where(
                CartItem.id == item.id,
                CartItem.status == "active",
                CartItem.visit_status.in_(("pending", "scheduled"))
            )
            .values(
                visit_status="scheduled",
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
                visit_type=visit_type,
                phone_number=phone_number,
                notes=notes,
                special_requests=special_requests
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            item = ReservationEngine.get_reservation(db, reservation_id)
            if item.status != "active":
                raise ReservationNotActiveError(item.status)
            raise VisitAlreadyConfirmedError()

        audit_logger.log_business_event(
            db=db,
            action="VISIT_SCHEDULED",
            user_id=buyer_id,
            resource_type="cart_item",
            resource_id=item.id,
            new_values={"scheduled_date": scheduled_date, "visit_type": visit_type}
        )

        db.commit()
        db.refresh(item)
        return item

    @staticmethod
    def confirm_visit(
        db: Session,
        reservation_id: uuid.UUID,
        confirmed_by: User,
        method: str = "manual",
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CartItem:
        """
        Confirm the visit and open the booking window. A broker confirming a
        property they did not list earns a seller commission in the same
        transaction.
        """
        if method not in CONFIRMATION_METHODS:
            raise ValidationError(f"Confirmation method must be one of {', '.join(CONFIRMATION_METHODS)}")

        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)
        item = ReservationEngine.get_reservation(db, reservation_id)
        prop = PropertyService.get_property(db, item.property_id, fresh=True)

        if not ReservationEngine._can_confirm(item, prop, confirmed_by):
            raise AuthorizationError("Not authorized to confirm visit for this property")
        if item.status != "active":
            raise ReservationNotActiveError(item.status)
        if item.visit_status == "confirmed":
            raise VisitAlreadyConfirmedError()

        ReservationEngine._check_visit_window(db, item, now, rules)

        booking_end = now + timedelta(days=rules.booking_window_days)
        values = {
            "visit_status": "confirmed",
            "visit_confirmed_at": now,
            "confirmed_by_id": confirmed_by.id,
            "confirmed_by_role": confirmed_by.role,
            "confirmation_method": method,
            "booking_window_start": now,
            "booking_window_end": booking_end,
        }
        if notes:
            values["notes"] = notes

        try:
            result = db.execute(
                update(CartItem)
                .where(
                    CartItem.id == item.id,
                    CartItem.status == "active",
                    CartItem.visit_status != "confirmed"
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                item = ReservationEngine.get_reservation(db, reservation_id)
                if item.status != "active":
                    raise ReservationNotActiveError(item.status)
                raise VisitAlreadyConfirmedError()

            db.refresh(item)
            PropertyService.update_lock(db, prop.id, ReservationEngine._mirror_values(item))

            commission = None
            if confirmed_by.role == "broker" and prop.added_by_id != confirmed_by.id:
                rate = prop.seller_rate if prop.seller_rate is not None else rules.seller_rate
                commission = CommissionService.record_commission(
                    db,
                    broker_id=confirmed_by.id,
                    property=prop,
                    commission_type="seller",
                    rate=rate,
                    reservation_id=item.id,
                    created_by=confirmed_by.id
                )

            audit_logger.log_business_event(
                db=db,
                action="VISIT_CONFIRMED",
                user_id=confirmed_by.id,
                resource_type="cart_item",
                resource_id=item.id,
                new_values={
                    "method": method,
                    "confirmed_by_role": confirmed_by.role,
                    "booking_window_end": booking_end,
                    "commission_id": commission.id if commission else None
                }
            )
        except IntegrityError:
            db.rollback()
            logger.warning(f"Duplicate visit confirmation for reservation {reservation_id} rejected")
            raise VisitAlreadyConfirmedError()
        except (ReservationNotActiveError, VisitAlreadyConfirmedError):
            raise
        except Exception:
            db.rollback()
            raise

        event = ReservationEngine._event(
            "VisitConfirmed", item, prop, now,
            booking_window_days=rules.booking_window_days
        )
        ReservationEngine._commit_and_dispatch(db, [event])
        db.refresh(item)

        logger.info(f"Visit confirmed for reservation {item.id} by {confirmed_by.role} {confirmed_by.id}")
        return item

    # ================================
    # PURCHASE
    # ================================

    @staticmethod
    def complete_purchase(
        db: Session,
        reservation_id: uuid.UUID,
        admin: User,
        now: Optional[datetime] = None
    ) -> CartItem:
        """Finalize a sale inside the booking window"""
        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)
        item = ReservationEngine.get_reservation(db, reservation_id)

        if item.status != "active":
            raise ReservationNotActiveError(item.status)
        if item.visit_status != "confirmed":
            raise InvalidTransitionError("Visit must be confirmed before the purchase can be completed")

        if now > ReservationEngine.expires_at(item, rules):
            ReservationEngine.expire_if_due(db, item, now=now, rules=rules)
            raise BookingWindowExpiredError()

        try:
            event = ReservationEngine._release(
                db, item, "purchased", now, actor_id=admin.id, final_status="purchased"
            )
            if event is None:
                db.rollback()
                item = ReservationEngine.get_reservation(db, reservation_id)
                raise ReservationNotActiveError(item.status)

            PropertyService.mark_sold(db, item.property_id, admin.id)
        except ReservationNotActiveError:
            raise
        except Exception:
            db.rollback()
            raise

        ReservationEngine._commit_and_dispatch(db, [event])
        db.refresh(item)

        logger.info(f"Purchase completed for reservation {item.id}, property {item.property_id} sold")
        return item

    # ================================
    # QUERIES
    # ================================

    @staticmethod
    def get_lock_status(
        db: Session,
        property_id: uuid.UUID,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Current lock after expiring a stale holder"""
        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)
        prop = PropertyService.get_property(db, property_id, fresh=True)

        ReservationEngine._heal_property(db, prop, now, rules)
        db.refresh(prop)
        return prop.lock_snapshot()

    @staticmethod
    def get_cart(
        db: Session,
        buyer_id: uuid.UUID,
        now: Optional[datetime] = None,
        include_history: bool = False
    ) -> Tuple[List[CartItem], ReservationRules]:
        """Buyer's reservations after expiring stale ones"""
        now = ReservationEngine._now(now)
        rules = RuleService.get_reservation_rules(db)
        ReservationEngine._heal_buyer(db, buyer_id, now, rules)

        query = db.query(CartItem).filter(CartItem.buyer_id == buyer_id)
        if not include_history:
            query = query.filter(CartItem.status == "active")
        items = query.order_by(CartItem.reserved_at.desc()).all()
        return items, rules
