# ================================
# PROPERTY SERVICE (services/property_service.py)
# ================================

from sqlalchemy.orm import Session
from sqlalchemy import update
from typing import List, Optional, Dict, Any, Tuple, Iterable
from uuid import UUID
from datetime import datetime, timedelta
import logging

from app.models.property import Property, LOCK_FIELDS
from app.models.user import User
from app.models.notification import Notification
from app.schemas.property import PropertyCreate, PropertyUpdate
from app.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError
)
from app.utils import utcnow, ensure_utc
from app.utils.audit import AuditLogger

logger = logging.getLogger(__name__)
audit_logger = AuditLogger()

MIN_REASON_LENGTH = 10
DEFAULT_EDIT_PERMISSION_HOURS = 24
DEFAULT_EDIT_PERMISSION_REASON = "Admin granted edit permission"

# No further edits once a listing has closed
CLOSED_STATUSES = ('sold', 'rented', 'expired')

class PropertyService:
    """Service for managing property listings and their approval workflow"""

    # Statuses in which the seller may still edit listing details
    EDITABLE_STATUSES = ('draft', 'pending_approval', 'rejected')

    # ================================
    # CRUD
    # ================================

    @staticmethod
    def create_property(
        db: Session,
        property_data: PropertyCreate,
        current_user: User
    ) -> Property:
        """Create a new property listed by a seller, a broker or an admin"""
        if current_user.role not in ("seller", "broker", "admin"):
            raise AuthorizationError("Only sellers, brokers and admins can list properties")

        if current_user.role == "seller":
            seller_id = current_user.id
            broker_id = property_data.broker_id
        else:
            if not property_data.seller_id:
                raise ValidationError("seller_id is required when listing on behalf of a seller")
            seller_id = property_data.seller_id
            broker_id = property_data.broker_id or (current_user.id if current_user.role == "broker" else None)

        seller = db.get(User, seller_id)
        if not seller or seller.role != "seller":
            raise ValidationError("seller_id must reference a seller")

        if broker_id:
            broker = db.get(User, broker_id)
            if not broker or broker.role != "broker":
                raise ValidationError("broker_id must reference a broker")

        now = utcnow()
        submit = property_data.submit_for_approval
        prop = Property(
            title=property_data.title,
            description=property_data.description,
            property_type=property_data.property_type,
            city=property_data.city,
            price=property_data.price,
            seller_id=seller_id,
            broker_id=broker_id,
            added_by_id=current_user.id,
            added_by_role=current_user.role,
            adder_rate=property_data.adder_rate,
            seller_rate=property_data.seller_rate,
            status="pending_approval" if submit else "draft",
            submitted_at=now if submit else None,
            created_by=current_user.id
        )

        db.add(prop)
        db.flush()

        # A broker who lists a property earns the adder commission
        if current_user.role == "broker":
            from app.services.commission_service import CommissionService
            from app.services.rule_service import RuleService

            rate = prop.adder_rate
            if rate is None:
                rate = RuleService.get_reservation_rules(db).adder_rate
            CommissionService.record_commission(
                db,
                broker_id=current_user.id,
                property=prop,
                commission_type="adder",
                rate=rate,
                created_by=current_user.id
            )

        audit_logger.log_business_event(
            db=db,
            action="PROPERTY_CREATED",
            user_id=current_user.id,
            resource_type="property",
            resource_id=prop.id,
            new_values={
                "title": prop.title,
                "price": prop.price,
                "status": prop.status,
                "added_by_role": prop.added_by_role
            }
        )

        db.commit()
        db.refresh(prop)
        return prop

    @staticmethod
    def get_property(db: Session, property_id: UUID, fresh: bool = False) -> Property:
        """Get a single property by ID"""
        prop = db.get(Property, property_id, populate_existing=fresh)
        if not prop:
            raise NotFoundError("Property not found")
        return prop

    @staticmethod
    def list_properties(
        db: Session,
        status: Optional[str] = None,
        seller_id: Optional[UUID] = None,
        broker_id: Optional[UUID] = None,
        available_only: bool = False,
        skip: int = 0,
        limit: int = 20
    ) -> Tuple[List[Property], int]:
        """List properties with filtering and pagination"""
        query = db.query(Property)

        if status:
            query = query.filter(Property.status == status)
        if seller_id:
            query = query.filter(Property.seller_id == seller_id)
        if broker_id:
            query = query.filter(Property.broker_id == broker_id)
        if available_only:
            query = query.filter(Property.status == "live", Property.lock_held.is_(False))

        total = query.count()
        items = query.order_by(Property.created_at.desc()).offset(skip).limit(limit).all()
        return items, total

    @staticmethod
    def edit_window_open(prop: Property, now: Optional[datetime] = None) -> bool:
        """An admin-granted edit window covers the given moment"""
        if not prop.edit_permission_enabled:
            return False
        start = ensure_utc(prop.edit_permission_start)
        end = ensure_utc(prop.edit_permission_end)
        if start is None or end is None:
            return False
        now = now or utcnow()
        return start <= now <= end

    @staticmethod
    def can_seller_edit(
        prop: Property,
        user: User,
        fields: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Seller may edit own, unlocked listings that are not yet approved.
        Past review only inside an open edit window, and only the granted fields.
        """
        if user.role == "admin":
            return True
        if prop.seller_id != user.id and prop.added_by_id != user.id:
            return False
        if prop.lock_held:
            return False
        if prop.status in PropertyService.EDITABLE_STATUSES:
            return True
        if not PropertyService.edit_window_open(prop, now):
            return False
        if fields is None:
            return True
        return set(fields) <= set(prop.edit_permission_fields or [])

    @staticmethod
    def update_property(
        db: Session,
        property_id: UUID,
        property_data: PropertyUpdate,
        current_user: User
    ) -> Property:
        """Update listing details"""
        prop = PropertyService.get_property(db, property_id)

        update_data = property_data.model_dump(exclude_unset=True)
        if not PropertyService.can_seller_edit(prop, current_user, fields=update_data):
            raise AuthorizationError("This property can no longer be edited")

        old_values = {field: getattr(prop, field) for field in update_data}
        for field, value in update_data.items():
            setattr(prop, field, value)
        prop.updated_by = current_user.id

        audit_logger.log_business_event(
            db=db,
            action="PROPERTY_UPDATED",
            user_id=current_user.id,
            resource_type="property",
            resource_id=prop.id,
            old_values=old_values,
            new_values=update_data
        )

        db.commit()
        db.refresh(prop)
        return prop

    # ================================
    # APPROVAL WORKFLOW
    # ================================

    @staticmethod
    def _transition(
        db: Session,
        prop: Property,
        allowed_from: Tuple[str, ...],
        to_status: str,
        action: str,
        user_id: UUID,
        extra: Optional[Dict[str, Any]] = None
    ) -> Property:
        if prop.status not in allowed_from:
            db.rollback()
            raise InvalidTransitionError(
                f"Cannot change property from '{prop.status}' to '{to_status}'"
            )

        old_status = prop.status
        prop.status = to_status
        prop.updated_by = user_id

        audit_logger.log_business_event(
            db=db,
            action=action,
            user_id=user_id,
            resource_type="property",
            resource_id=prop.id,
            old_values={"status": old_status},
            new_values={"status": to_status, **(extra or {})}
        )

        db.commit()
        db.refresh(prop)
        logger.info(f"Property {prop.id} moved from {old_status} to {to_status}")
        return prop

    @staticmethod
    def _require_reason(reason: Optional[str], what: str) -> str:
        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise ValidationError(f"{what} reason must be at least {MIN_REASON_LENGTH} characters")
        return reason

    @staticmethod
    def submit_for_approval(db: Session, property_id: UUID, current_user: User) -> Property:
        prop = PropertyService.get_property(db, property_id)
        if current_user.role != "admin" and current_user.id not in (prop.seller_id, prop.added_by_id):
            raise AuthorizationError("Only the owner can submit this property")

        prop.submitted_at = utcnow()
        prop.rejection_reason = None
        return PropertyService._transition(
            db, prop, ("draft", "rejected"), "pending_approval", "PROPERTY_SUBMITTED", current_user.id
        )

    @staticmethod
    def approve_property(
        db: Session,
        property_id: UUID,
        admin: User,
        go_live: bool = False
    ) -> Property:
        prop = PropertyService.get_property(db, property_id)
        now = utcnow()

        prop.approved_by = admin.id
        prop.approved_at = now
        target = "approved"
        if go_live:
            target = "live"
            prop.live_at = now

        return PropertyService._transition(
            db, prop, ("pending_approval",), target, "PROPERTY_APPROVED", admin.id, {"go_live": go_live}
        )

    @staticmethod
    def reject_property(db: Session, property_id: UUID, admin: User, reason: str) -> Property:
        reason = PropertyService._require_reason(reason, "Rejection")
        prop = PropertyService.get_property(db, property_id)

        prop.rejected_by = admin.id
        prop.rejected_at = utcnow()
        prop.rejection_reason = reason
        return PropertyService._transition(
            db, prop, ("pending_approval",), "rejected", "PROPERTY_REJECTED", admin.id, {"reason": reason}
        )

    @staticmethod
    def suspend_property(db: Session, property_id: UUID, admin: User, reason: str) -> Property:
        reason = PropertyService._require_reason(reason, "Suspension")
        prop = PropertyService.get_property(db, property_id, fresh=True)

        if prop.lock_held:
            raise InvalidTransitionError("Property is in a buyer's cart. Release the reservation first")

        prop.previous_status = prop.status
        prop.suspended_by = admin.id
        prop.suspended_at = utcnow()
        prop.suspension_reason = reason
        return PropertyService._transition(
            db, prop, ("approved", "live"), "suspended", "PROPERTY_SUSPENDED", admin.id, {"reason": reason}
        )

    @staticmethod
    def unsuspend_property(db: Session, property_id: UUID, admin: User) -> Property:
        prop = PropertyService.get_property(db, property_id)
        target = prop.previous_status or "approved"

        prop.previous_status = None
        prop.suspension_reason = None
        return PropertyService._transition(
            db, prop, ("suspended",), target, "PROPERTY_UNSUSPENDED", admin.id
        )

    @staticmethod
    def make_live(db: Session, property_id: UUID, admin: User) -> Property:
        prop = PropertyService.get_property(db, property_id)
        prop.live_at = utcnow()
        return PropertyService._transition(
            db, prop, ("approved",), "live", "PROPERTY_LIVE", admin.id
        )

    # ================================
    # EDIT PERMISSIONS
    # ================================

    @staticmethod
    def grant_edit_permission(
        db: Session,
        property_id: UUID,
        admin: User,
        allowed_fields: List[str],
        reason: Optional[str] = None,
        duration_hours: int = DEFAULT_EDIT_PERMISSION_HOURS,
        now: Optional[datetime] = None
    ) -> Property:
        """
        Open a time-boxed edit window on a reviewed listing.

        The seller may change only the allowed fields until the window ends;
        a new grant replaces the previous one. The seller is notified in the
        same transaction.
        """
        reason = PropertyService._require_reason(reason or DEFAULT_EDIT_PERMISSION_REASON, "Edit permission")
        fields = list(dict.fromkeys(allowed_fields or []))
        if not fields:
            raise ValidationError("At least one field must be allowed")
        unknown = set(fields) - set(PropertyUpdate.model_fields)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if duration_hours <= 0:
            raise ValidationError("Edit permission duration must be positive")

        prop = PropertyService.get_property(db, property_id)
        if prop.status in CLOSED_STATUSES:
            raise InvalidTransitionError(f"Cannot grant edit permission on a {prop.status} property")

        start = now or utcnow()
        end = start + timedelta(hours=duration_hours)
        old_values = prop.edit_permission_snapshot()

        prop.edit_permission_enabled = True
        prop.edit_permission_fields = fields
        prop.edit_permission_start = start
        prop.edit_permission_end = end
        prop.edit_permission_reason = reason
        prop.edit_permission_granted_by = admin.id
        prop.updated_by = admin.id

        audit_logger.log_business_event(
            db=db,
            action="EDIT_PERMISSION_GRANTED",
            user_id=admin.id,
            resource_type="property",
            resource_id=prop.id,
            old_values=old_values,
            new_values=prop.edit_permission_snapshot()
        )

        db.add(Notification(
            user_id=prop.seller_id,
            type="edit_permission_granted",
            title="Edit Permission Granted",
            message=(
                f"You can now edit {', '.join(fields)} for property \"{prop.title}\" "
                f"until {end:%Y-%m-%d %H:%M} UTC"
            ),
            data={
                "property_id": str(prop.id),
                "property_title": prop.title,
                "allowed_fields": fields,
                "ends_at": end.isoformat(),
            },
            priority="medium",
        ))

        db.commit()
        db.refresh(prop)
        logger.info(f"Edit permission on property {prop.id} granted by {admin.id} until {end.isoformat()}")
        return prop

    # ================================
    # CART LOCK (written only by the reservation engine)
    # ================================

    @staticmethod
    def acquire_lock(
        db: Session,
        property_id: UUID,
        buyer_id: UUID,
        reservation_id: UUID,
        reserved_at: datetime
    ) -> bool:
        """Set the lock if the property is live and not held. Does not commit."""
        result = db.execute(
            update(Property)
            .where(
                Property.id == property_id,
                Property.lock_held.is_(False),
                Property.status == "live"
            )
            .values(
                lock_held=True,
                lock_holder_id=buyer_id,
                lock_reservation_id=reservation_id,
                lock_reserved_at=reserved_at,
                lock_visit_confirmed=False,
                lock_visit_confirmed_at=None,
                lock_confirmed_by_id=None,
                lock_confirmed_by_role=None,
                lock_confirmation_method=None,
                lock_booking_window_start=None,
                lock_booking_window_end=None
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def update_lock(db: Session, property_id: UUID, values: Dict[str, Any]) -> bool:
        """Overwrite lock columns. Does not commit."""
        unknown = set(values) - set(LOCK_FIELDS)
        if unknown:
            raise ValueError(f"Not lock fields: {sorted(unknown)}")

        result = db.execute(
            update(Property)
            .where(Property.id == property_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def clear_lock(
        db: Session,
        property_id: UUID,
        reservation_id: Optional[UUID] = None,
        match_unowned: bool = False
    ) -> bool:
        """
        Clear every lock column. With reservation_id, only clears a lock that
        belongs to that reservation; with match_unowned a None reservation_id
        only clears a lock without a reservation. Does not commit.
        """
        stmt = update(Property).where(Property.id == property_id)
        if reservation_id is not None:
            stmt = stmt.where(Property.lock_reservation_id == reservation_id)
        elif match_unowned:
            stmt = stmt.where(Property.lock_reservation_id.is_(None))

        values = {field: None for field in LOCK_FIELDS}
        values["lock_held"] = False
        values["lock_visit_confirmed"] = False

        result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    @staticmethod
    def mark_sold(db: Session, property_id: UUID, user_id: UUID) -> None:
        """Mark a property sold after purchase completion. Does not commit."""
        db.execute(
            update(Property)
            .where(Property.id == property_id)
            .values(status="sold", previous_status=Property.status, updated_by=user_id)
            .execution_options(synchronize_session=False)
        )
