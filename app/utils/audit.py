# ================================
# AUDIT LOGGING UTILITY (utils/audit.py)
# ================================

from sqlalchemy.orm import Session
from app.models.audit import AuditLog
from typing import Optional, Dict, Any, Union
from datetime import datetime
from ipaddress import IPv4Address, IPv6Address
from decimal import Decimal
import uuid
import json
import logging

logger = logging.getLogger(__name__)

class AuditLogger:
    """
    Audit logging for marketplace state changes.

    Entries are added to the caller's session so they commit or roll back
    together with the change they describe.
    """

    def log_event(
        self,
        db: Session,
        action: str,
        user_id: Optional[uuid.UUID],
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[Union[str, IPv4Address, IPv6Address]] = None,
        user_agent: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditLog]:
        """
        Log an event.

        Args:
            db: Database session
            action: Action performed (e.g., 'PROPERTY_LOCKED', 'RULE_UPDATED')
            user_id: ID of user performing action (None for the system)
            details: Additional structured data about the event
            ip_address: Client IP address
            user_agent: Client user agent string
            resource_type: Type of resource affected (optional)
            resource_id: ID of affected resource (optional)
            old_values: Previous values before change (for updates)

        Returns:
            Created AuditLog instance
        """
        try:
            sanitized_details = self._sanitize_sensitive_data(details or {})
            sanitized_old_values = self._sanitize_sensitive_data(old_values or {})

            audit_entry = AuditLog(
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                old_values=sanitized_old_values if sanitized_old_values else None,
                new_values=sanitized_details if sanitized_details else None,
                ip_address=self._normalize_ip_address(ip_address),
                user_agent=user_agent[:500] if user_agent else None
            )

            db.add(audit_entry)

            self._log_to_application_logger(action, user_id, sanitized_details)

            return audit_entry

        except Exception as e:
            logger.error(f"Failed to create audit log: {e}", exc_info=True)
            return None

    def log_business_event(
        self,
        db: Session,
        action: str,
        user_id: Optional[uuid.UUID],
        resource_type: str,
        resource_id: uuid.UUID,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditLog]:
        """
        Log business logic events (state changes on properties, carts, commissions).

        Args:
            db: Database session
            action: Business action (e.g., 'VISIT_CONFIRMED', 'COMMISSION_APPROVED')
            user_id: User performing the action, None for the expiry sweeper
            resource_type: Type of business resource ('property', 'cart_item', ...)
            resource_id: ID of the affected resource
            old_values: Previous values (for updates/deletes)
            new_values: New values (for creates/updates)
            additional_context: Extra context information

        Returns:
            Created AuditLog instance
        """
        combined_details = {**(new_values or {}), **(additional_context or {})}

        return self.log_event(
            db=db,
            action=action,
            user_id=user_id,
            details=combined_details,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values
        )

    def log_admin_action(
        self,
        db: Session,
        action: str,
        admin_user_id: uuid.UUID,
        resource_type: str,
        resource_id: Optional[uuid.UUID],
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditLog]:
        """Log an administrative override (forced release, commission override, ...)"""
        admin_details = {
            "admin_action": True,
            "reason": reason,
            **(details or {})
        }

        return self.log_event(
            db=db,
            action=action,
            user_id=admin_user_id,
            details=admin_details,
            resource_type=resource_type,
            resource_id=resource_id
        )

    # ================================
    # UTILITY METHODS
    # ================================

    def _sanitize_sensitive_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove sensitive values and convert everything to JSON-safe types.

        Args:
            data: Dictionary that may contain sensitive data

        Returns:
            Sanitized dictionary
        """
        if not data:
            return {}

        sanitized = {}
        for key, value in data.items():
            key_str = str(key)

            if self._is_sensitive_key(key_str):
                sanitized[key_str] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key_str] = self._sanitize_sensitive_data(value)
            elif isinstance(value, (list, tuple)):
                sanitized[key_str] = [
                    self._sanitize_sensitive_data(item) if isinstance(item, dict)
                    else self._json_safe(item)
                    for item in value
                ]
            elif isinstance(value, str) and len(value) > 1000:
                sanitized[key_str] = value[:1000] + "...[TRUNCATED]"
            else:
                sanitized[key_str] = self._json_safe(value)

        return sanitized

    @staticmethod
    def _json_safe(value: Any) -> Any:
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def _normalize_ip_address(self, ip_address: Optional[Union[str, IPv4Address, IPv6Address]]) -> Optional[str]:
        """
        Normalize IP address for consistent storage.

        Args:
            ip_address: IP address in various formats

        Returns:
            Normalized IP address string or None
        """
        if not ip_address:
            return None

        try:
            if isinstance(ip_address, (IPv4Address, IPv6Address)):
                return str(ip_address)

            # Handle forwarded IPs (take the first one)
            if ',' in ip_address:
                ip_address = ip_address.split(',')[0].strip()

            from ipaddress import ip_address as parse_ip
            return str(parse_ip(ip_address))

        except ValueError as e:
            logger.warning(f"Failed to normalize IP address {ip_address}: {e}")
            return str(ip_address)[:45]

    def _log_to_application_logger(
        self,
        action: str,
        user_id: Optional[uuid.UUID],
        details: Dict[str, Any]
    ):
        """Also log to application logger for immediate visibility"""
        log_message = f"AUDIT: {action}"
        if user_id:
            log_message += f" | User: {user_id}"
        else:
            log_message += " | User: system"

        if details:
            log_message += f" | Details: {json.dumps(details, default=str)}"

        logger.info(log_message)

    def _is_sensitive_key(self, key: str) -> bool:
        """Check if a key likely contains sensitive information"""
        sensitive_patterns = ['password', 'secret', 'token', 'api_key', 'hash']
        key_lower = key.lower()
        return any(pattern in key_lower for pattern in sensitive_patterns)

# Default audit logger instance for application-wide use
audit_logger = AuditLogger()
