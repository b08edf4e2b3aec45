# backend/booking_core/core/exceptions.py
"""
Domain-specific exceptions for the booking core.

Every buyer-facing failure is one of these typed exceptions. The API layer
converts them with ``to_http_exception``; the webhook and task layers decide
whether a failure is retried by the caller (gateway redelivery, Celery retry).
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="NOT_FOUND", details=details)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# Specific business exceptions


class NotOwnerException(ForbiddenException):
    """Raised when the caller does not own the booking they are acting on."""

    def __init__(self, booking_id: str) -> None:
        super().__init__(
            message="Booking does not belong to the caller",
            code="NOT_OWNER",
            details={"booking_id": booking_id},
        )


class WrongStateException(BusinessRuleException):
    """Raised when a booking is not in the status an operation requires."""

    def __init__(self, booking_id: str, current: str, expected: str) -> None:
        super().__init__(
            message=f"Booking is {current}; expected {expected}",
            code="WRONG_STATE",
            details={"booking_id": booking_id, "status": current, "expected": expected},
        )


class SlotUnavailableException(ConflictException):
    """Raised when a slot cannot be held: gone, already booked, or held by another buyer."""

    SLOT_GONE = "slot_gone"
    SLOT_BOOKED = "slot_booked"
    HELD_BY_OTHER = "held_by_other"

    _MESSAGES = {
        SLOT_GONE: "Time slot is no longer available",
        SLOT_BOOKED: "Time slot is already booked",
        HELD_BY_OTHER: "Time slot is being booked by another user",
    }

    def __init__(self, slot_id: str, reason: str) -> None:
        self.slot_id = slot_id
        self.reason = reason
        super().__init__(
            message=self._MESSAGES.get(reason, "Time slot is unavailable"),
            code="SLOT_UNAVAILABLE",
            details={"slot_id": slot_id, "reason": reason},
        )


class PriceNotConfiguredException(ServiceException):
    """Raised when no gateway price exists for a level/discount tier (operator error)."""

    def __init__(self, tier_key: str) -> None:
        self.tier_key = tier_key
        super().__init__(
            message=f"Price not configured for {tier_key}",
            code="PRICE_NOT_CONFIGURED",
            details={"tier": tier_key},
        )


class TooLateException(BusinessRuleException):
    """Raised when a cancellation falls inside the no-cancel window before the lesson."""

    def __init__(self, required_hours: int, hours_until_start: float) -> None:
        super().__init__(
            message=f"Bookings can only be cancelled more than {required_hours} hours in advance",
            code="TOO_LATE",
            details={
                "required_hours": required_hours,
                "hours_until_start": round(hours_until_start, 2),
            },
        )


class InvalidSignatureException(DomainException):
    """Raised when a webhook payload fails signature verification. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message, code="INVALID_SIGNATURE")


class GatewayException(DomainException):
    """Raised when the payment gateway rejects or fails a request."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="GATEWAY_ERROR", details=details)


class ConcurrentUpdateException(ConflictException):
    """Raised when a compare-and-set write keeps losing races. Safe to retry."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity} {entity_id} was modified concurrently; retry",
            code="CONCURRENT_UPDATE",
            details={"entity": entity, "id": entity_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
