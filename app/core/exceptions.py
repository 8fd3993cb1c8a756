# ================================
# CUSTOM EXCEPTIONS (core/exceptions.py)
# ================================

class AppException(Exception):
    """Base Exception für Application-spezifische Fehler"""

    def __init__(self, detail: str, status_code: int = 400, error_code: str = None):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(detail)

class AuthenticationError(AppException):
    """Authentication-spezifische Fehler"""

    def __init__(self, detail: str = "Authentication failed", error_code: str = "AUTH_FAILED"):
        super().__init__(detail, 401, error_code)

class AuthorizationError(AppException):
    """Authorization-spezifische Fehler"""

    def __init__(self, detail: str = "Access denied", error_code: str = "ACCESS_DENIED"):
        super().__init__(detail, 403, error_code)

class ValidationError(AppException):
    """Validation-spezifische Fehler"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(detail, 422, error_code)

class NotFoundError(AppException):
    """Resource does not exist"""

    def __init__(self, detail: str = "Resource not found", error_code: str = "NOT_FOUND"):
        super().__init__(detail, 404, error_code)

class InvalidTransitionError(AppException):
    """Status change not allowed from the current state"""

    def __init__(self, detail: str, error_code: str = "INVALID_TRANSITION"):
        super().__init__(detail, 409, error_code)

# ================================
# RESERVATION ERRORS
# ================================

class ReservationError(AppException):
    """Base class for cart reservation outcomes returned to the caller"""
    pass

class AlreadyHeldError(ReservationError):
    def __init__(self, detail: str = "Property is not available: it is already in another buyer's cart"):
        super().__init__(detail, 409, "ALREADY_HELD")

class DuplicateReservationError(ReservationError):
    def __init__(self, detail: str = "Property is already in your cart"):
        super().__init__(detail, 409, "DUPLICATE_RESERVATION")

class CapacityExceededError(ReservationError):
    def __init__(self, max_properties: int):
        self.max_properties = max_properties
        super().__init__(
            f"Cart limit reached (max {max_properties} properties). Please remove some items first.",
            409,
            "CAPACITY_EXCEEDED"
        )

class PropertyUnavailableError(ReservationError):
    def __init__(self, detail: str = "Property is not available for cart"):
        super().__init__(detail, 409, "PROPERTY_UNAVAILABLE")

class ReservationNotActiveError(ReservationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Reservation is no longer active (status: {status})", 409, "RESERVATION_NOT_ACTIVE")

class VisitAlreadyConfirmedError(ReservationError):
    def __init__(self, detail: str = "Visit already confirmed"):
        super().__init__(detail, 409, "VISIT_ALREADY_CONFIRMED")

class VisitWindowExpiredError(ReservationError):
    def __init__(self, visit_window_days: int):
        super().__init__(
            f"The {visit_window_days}-day visit window has expired. Property has been removed from your cart.",
            410,
            "VISIT_WINDOW_EXPIRED"
        )

class BookingWindowExpiredError(ReservationError):
    def __init__(self, detail: str = "The booking window has expired. Property has been removed from your cart."):
        super().__init__(detail, 410, "BOOKING_WINDOW_EXPIRED")
