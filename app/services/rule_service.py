# ================================
# RULE SERVICE (services/rule_service.py)
# ================================

from typing import Optional, List, Dict, Any, Callable
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging
import uuid

from app.config import settings
from app.models.rule import Rule
from app.schemas.rule import RuleValue, ReservationRules, RuleUpsert
from app.core.exceptions import NotFoundError
from app.utils.audit import AuditLogger

logger = logging.getLogger(__name__)
audit_logger = AuditLogger()

# Rule types read by the reservation engine and commission ledger
CART_MAX_PROPERTIES = "cart_max_properties"
VISIT_WINDOW_DAYS = "visit_window_days"
BOOKING_WINDOW_DAYS = "booking_window_days"
COMMISSION_ADDER = "commission_adder"
COMMISSION_SELLER = "commission_seller"

DEFAULT_RULES = (
    (CART_MAX_PROPERTIES, "Maximum properties per cart", lambda: settings.DEFAULT_CART_MAX_PROPERTIES, {"userType": "buyer"}),
    (VISIT_WINDOW_DAYS, "Visit window (days)", lambda: settings.DEFAULT_VISIT_WINDOW_DAYS, None),
    (BOOKING_WINDOW_DAYS, "Booking window (days)", lambda: settings.DEFAULT_BOOKING_WINDOW_DAYS, None),
    (COMMISSION_ADDER, "Adder commission (%)", lambda: settings.DEFAULT_ADDER_RATE, {"userType": "broker"}),
    (COMMISSION_SELLER, "Seller commission (%)", lambda: settings.DEFAULT_SELLER_RATE, {"userType": "broker"}),
)

class RuleService:
    """Admin-managed configuration values with priority and conditions"""

    @staticmethod
    def get_rule(
        db: Session,
        rule_type: str,
        conditions: Optional[Dict[str, Any]] = None
    ) -> Optional[RuleValue]:
        """
        Highest-priority active rule of the given type whose stored conditions
        contain the requested ones. Rules without conditions match everything.
        """
        rules = db.query(Rule).filter(
            Rule.rule_type == rule_type,
            Rule.is_active.is_(True)
        ).order_by(Rule.priority.desc(), Rule.updated_at.desc()).all()

        for rule in rules:
            if RuleService._conditions_match(rule.conditions, conditions):
                return RuleValue(value=rule.value, priority=rule.priority)

        return None

    @staticmethod
    def _conditions_match(stored: Optional[Dict[str, Any]], requested: Optional[Dict[str, Any]]) -> bool:
        if not stored or not requested:
            return True
        return all(stored.get(key) == value for key, value in requested.items())

    @staticmethod
    def _resolve(
        db: Session,
        rule_type: str,
        default: Any,
        cast: Callable[[Any], Any],
        conditions: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Rule value cast to the expected type, or the default; never raises"""
        try:
            # Savepoint so a failed lookup does not abort the caller's transaction
            with db.begin_nested():
                rule = RuleService.get_rule(db, rule_type, conditions)
        except SQLAlchemyError as e:
            logger.error(f"Rule lookup for '{rule_type}' failed, using default {default}: {e}")
            return default

        if rule is None:
            return default

        try:
            value = cast(rule.value)
        except (TypeError, ValueError):
            logger.warning(f"Rule '{rule_type}' has invalid value {rule.value!r}, using default {default}")
            return default

        if value < 0 or (cast is int and value == 0):
            logger.warning(f"Rule '{rule_type}' has out-of-range value {value}, using default {default}")
            return default

        return value

    @staticmethod
    def get_reservation_rules(db: Session) -> ReservationRules:
        """Effective cart limits and commission rates with fallbacks"""
        return ReservationRules(
            max_properties=RuleService._resolve(
                db, CART_MAX_PROPERTIES, settings.DEFAULT_CART_MAX_PROPERTIES, int, {"userType": "buyer"}
            ),
            visit_window_days=RuleService._resolve(
                db, VISIT_WINDOW_DAYS, settings.DEFAULT_VISIT_WINDOW_DAYS, int
            ),
            booking_window_days=RuleService._resolve(
                db, BOOKING_WINDOW_DAYS, settings.DEFAULT_BOOKING_WINDOW_DAYS, int
            ),
            adder_rate=RuleService._resolve(
                db, COMMISSION_ADDER, settings.DEFAULT_ADDER_RATE, float, {"userType": "broker"}
            ),
            seller_rate=RuleService._resolve(
                db, COMMISSION_SELLER, settings.DEFAULT_SELLER_RATE, float, {"userType": "broker"}
            ),
        )

    # ================================
    # ADMINISTRATION
    # ================================

    @staticmethod
    def list_rules(db: Session, include_inactive: bool = False) -> List[Rule]:
        query = db.query(Rule)
        if not include_inactive:
            query = query.filter(Rule.is_active.is_(True))
        return query.order_by(Rule.rule_type, Rule.priority.desc()).all()

    @staticmethod
    def upsert_rule(db: Session, data: RuleUpsert, admin_id: Optional[uuid.UUID]) -> Rule:
        """Create a rule or update the one with the same type and conditions"""
        candidates = db.query(Rule).filter(Rule.rule_type == data.rule_type).all()
        rule = next((r for r in candidates if (r.conditions or None) == (data.conditions or None)), None)

        old_values = None
        if rule is None:
            rule = Rule(
                rule_type=data.rule_type,
                conditions=data.conditions,
                created_by=admin_id
            )
            db.add(rule)
            action = "RULE_CREATED"
        else:
            old_values = {"value": rule.value, "priority": rule.priority, "is_active": rule.is_active}
            action = "RULE_UPDATED"

        rule.name = data.name
        rule.description = data.description
        rule.value = data.value
        rule.priority = data.priority
        rule.is_active = data.is_active
        rule.updated_by = admin_id
        db.flush()

        audit_logger.log_business_event(
            db=db,
            action=action,
            user_id=admin_id,
            resource_type="rule",
            resource_id=rule.id,
            old_values=old_values,
            new_values={"rule_type": rule.rule_type, "value": rule.value, "priority": rule.priority}
        )

        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def deactivate_rule(db: Session, rule_id: uuid.UUID, admin_id: Optional[uuid.UUID]) -> Rule:
        rule = db.get(Rule, rule_id)
        if not rule:
            raise NotFoundError("Rule not found")

        rule.is_active = False
        rule.updated_by = admin_id

        audit_logger.log_business_event(
            db=db,
            action="RULE_DEACTIVATED",
            user_id=admin_id,
            resource_type="rule",
            resource_id=rule.id,
            new_values={"rule_type": rule.rule_type}
        )

        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def ensure_default_rules(db: Session) -> int:
        """Insert any missing default rule; returns how many were created"""
        created = 0
        for rule_type, name, default, conditions in DEFAULT_RULES:
            exists = db.query(Rule.id).filter(Rule.rule_type == rule_type).first()
            if exists:
                continue
            db.add(Rule(
                rule_type=rule_type,
                name=name,
                value=default(),
                conditions=conditions,
                priority=1,
                is_active=True
            ))
            created += 1

        if created:
            db.commit()
            logger.info(f"Created {created} default rules")
        return created
