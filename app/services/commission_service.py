# ================================
# COMMISSION SERVICE (services/commission_service.py)
# ================================

from typing import Optional, List, Tuple, Union
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
import logging
import uuid

from app.models.commission import Commission, COMMISSION_TYPES
from app.models.property import Property
from app.schemas.commission import CommissionCalculation
from app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.utils import utcnow
from app.utils.audit import AuditLogger

logger = logging.getLogger(__name__)
audit_logger = AuditLogger()

CENT = Decimal("0.01")
Number = Union[Decimal, float, int, str]

def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

class CommissionService:
    """Append-only commission ledger with an admin approval workflow"""

    @staticmethod
    def calculate_commission(
        property_price: Number,
        commission_type: str,
        adder_rate: Number,
        seller_rate: Number
    ) -> CommissionCalculation:
        """Rate and amount for a commission type; adder_seller earns both rates"""
        if commission_type not in COMMISSION_TYPES:
            raise ValidationError(f"Unknown commission type '{commission_type}'")

        price = _to_decimal(property_price)
        if commission_type == "adder":
            rate = _to_decimal(adder_rate)
        elif commission_type == "seller":
            rate = _to_decimal(seller_rate)
        else:
            rate = _to_decimal(adder_rate) + _to_decimal(seller_rate)

        amount = (price * rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
        return CommissionCalculation(
            commission_type=commission_type,
            property_price=price,
            rate=rate,
            amount=amount
        )

    @staticmethod
    def record_commission(
        db: Session,
        broker_id: uuid.UUID,
        property: Property,
        commission_type: str,
        rate: Number,
        reservation_id: Optional[uuid.UUID] = None,
        created_by: Optional[uuid.UUID] = None
    ) -> Commission:
        """
        Append a pending commission of price x rate / 100.

        Runs inside the caller's transaction and does not commit; a duplicate
        (reservation, type) pair surfaces as IntegrityError on flush.
        """
        if commission_type not in COMMISSION_TYPES:
            raise ValidationError(f"Unknown commission type '{commission_type}'")

        price = _to_decimal(property.price)
        rate = _to_decimal(rate)
        amount = (price * rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)

        commission = Commission(
            broker_id=broker_id,
            property_id=property.id,
            reservation_id=reservation_id,
            property_price=price,
            commission_type=commission_type,
            rate=rate,
            amount=amount,
            status="pending",
            created_by=created_by
        )
        db.add(commission)
        db.flush()

        audit_logger.log_business_event(
            db=db,
            action="COMMISSION_RECORDED",
            user_id=created_by,
            resource_type="commission",
            resource_id=commission.id,
            new_values={
                "broker_id": broker_id,
                "property_id": property.id,
                "reservation_id": reservation_id,
                "commission_type": commission_type,
                "rate": rate,
                "amount": amount
            }
        )

        logger.info(
            f"Recorded {commission_type} commission {amount} ({rate}%) "
            f"for broker {broker_id} on property {property.id}"
        )
        return commission

    @staticmethod
    def get_commission(db: Session, commission_id: uuid.UUID) -> Commission:
        commission = db.get(Commission, commission_id)
        if not commission:
            raise NotFoundError("Commission not found")
        return commission

    @staticmethod
    def list_commissions(
        db: Session,
        broker_id: Optional[uuid.UUID] = None,
        property_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        commission_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Commission], int]:
        query = db.query(Commission)

        if broker_id:
            query = query.filter(Commission.broker_id == broker_id)
        if property_id:
            query = query.filter(Commission.property_id == property_id)
        if status:
            query = query.filter(Commission.status == status)
        if commission_type:
            query = query.filter(Commission.commission_type == commission_type)

        total = query.count()
        items = query.order_by(Commission.created_at.desc()).offset(skip).limit(limit).all()
        return items, total

    # ================================
    # ADMIN WORKFLOW
    # ================================

    @staticmethod
    def _require_status(db: Session, commission: Commission, allowed: Tuple[str, ...], action: str):
        if commission.status not in allowed:
            status = commission.status
            db.rollback()
            raise InvalidTransitionError(f"Cannot {action} a commission that is '{status}'")

    @staticmethod
    def approve(
        db: Session,
        commission_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: Optional[str] = None
    ) -> Commission:
        """pending -> approved"""
        commission = CommissionService.get_commission(db, commission_id)
        CommissionService._require_status(db, commission, ("pending",), "approve")

        commission.status = "approved"
        commission.approved_by = admin_id
        commission.approved_at = utcnow()
        if notes:
            commission.notes = notes
        commission.updated_by = admin_id

        audit_logger.log_business_event(
            db=db,
            action="COMMISSION_APPROVED",
            user_id=admin_id,
            resource_type="commission",
            resource_id=commission.id,
            old_values={"status": "pending"},
            new_values={"status": "approved"}
        )

        db.commit()
        db.refresh(commission)
        return commission

    @staticmethod
    def mark_paid(
        db: Session,
        commission_id: uuid.UUID,
        admin_id: uuid.UUID,
        payment_method: str,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Commission:
        """approved -> paid"""
        commission = CommissionService.get_commission(db, commission_id)
        CommissionService._require_status(db, commission, ("approved",), "pay")

        commission.status = "paid"
        commission.paid_by = admin_id
        commission.paid_at = utcnow()
        commission.payment_method = payment_method
        commission.transaction_id = transaction_id
        if notes:
            commission.notes = notes
        commission.updated_by = admin_id

        audit_logger.log_business_event(
            db=db,
            action="COMMISSION_PAID",
            user_id=admin_id,
            resource_type="commission",
            resource_id=commission.id,
            old_values={"status": "approved"},
            new_values={
                "status": "paid",
                "payment_method": payment_method,
                "transaction_id": transaction_id
            }
        )

        db.commit()
        db.refresh(commission)
        return commission

    @staticmethod
    def override(
        db: Session,
        commission_id: uuid.UUID,
        admin_id: uuid.UUID,
        rate: Number,
        reason: str
    ) -> Commission:
        """Replace the rate of an unpaid commission and recompute the amount"""
        reason = (reason or "").strip()
        if len(reason) < 10:
            raise ValidationError("Override reason must be at least 10 characters")

        rate = _to_decimal(rate)
        if rate < 0 or rate > 100:
            raise ValidationError("Rate must be between 0 and 100")

        commission = CommissionService.get_commission(db, commission_id)
        CommissionService._require_status(db, commission, ("pending", "approved"), "override")

        old_rate = commission.rate
        old_amount = commission.amount
        if not commission.is_override:
            commission.original_rate = old_rate

        commission.rate = rate
        commission.amount = (_to_decimal(commission.property_price) * rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
        commission.is_override = True
        commission.override_reason = reason
        commission.updated_by = admin_id

        audit_logger.log_admin_action(
            db=db,
            action="COMMISSION_OVERRIDDEN",
            admin_user_id=admin_id,
            resource_type="commission",
            resource_id=commission.id,
            reason=reason,
            details={
                "old_rate": old_rate,
                "old_amount": old_amount,
                "new_rate": rate,
                "new_amount": commission.amount
            }
        )

        db.commit()
        db.refresh(commission)
        return commission

    @staticmethod
    def cancel(
        db: Session,
        commission_id: uuid.UUID,
        admin_id: uuid.UUID,
        reason: Optional[str] = None
    ) -> Commission:
        """pending/approved -> cancelled"""
        commission = CommissionService.get_commission(db, commission_id)
        CommissionService._require_status(db, commission, ("pending", "approved"), "cancel")

        old_status = commission.status
        commission.status = "cancelled"
        commission.cancelled_at = utcnow()
        if reason:
            commission.notes = reason
        commission.updated_by = admin_id

        audit_logger.log_business_event(
            db=db,
            action="COMMISSION_CANCELLED",
            user_id=admin_id,
            resource_type="commission",
            resource_id=commission.id,
            old_values={"status": old_status},
            new_values={"status": "cancelled", "reason": reason}
        )

        db.commit()
        db.refresh(commission)
        return commission
