# backend/tutorbook/core/exceptions.py
"""
Domain-specific exceptions for the TutorBook backend.

These exceptions carry business-focused messages and a stable ``code`` so the
API layer can translate them to HTTP responses without inspecting strings.
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


class ValidationException(DomainException):
    """Raised when request or business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when the caller lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details,
            },
        )


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a lesson slot is already held by another booking."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing lesson",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class ModificationWindowException(BusinessRuleException):
    """Raised when a cancel or reschedule comes too close to the lesson start."""

    def __init__(self, action: str, required_hours: int, hours_until_start: float):
        super().__init__(
            message=(
                f"Lessons can only be {action} at least {required_hours} hours "
                "before the scheduled start"
            ),
            code="MODIFICATION_WINDOW_CLOSED",
            details={
                "action": action,
                "required_hours": required_hours,
                "hours_until_start": round(hours_until_start, 2),
            },
        )


class InvalidTransitionException(BusinessRuleException):
    """Raised when a lesson cannot move from its current status to the requested one."""

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Cannot move lesson from '{current}' to '{target}'",
            code="INVALID_LESSON_TRANSITION",
            details={"current_status": current, "target_status": target},
        )


class LessonNotCompletedException(ValidationException):
    """Raised when payment capture is attempted before the tutor completed the lesson."""

    def __init__(self, current_status: str):
        super().__init__(
            message="Lesson must be completed before capturing payment",
            code="LESSON_NOT_COMPLETED",
            details={"current_status": current_status},
        )


class PaymentMismatchException(ValidationException):
    """Raised when a supplied authorization handle differs from the one on record."""

    def __init__(self) -> None:
        super().__init__(
            message="Payment intent ID does not match the lesson",
            code="PAYMENT_INTENT_MISMATCH",
        )


class PaymentAlreadyFinalizedException(ValidationException):
    """Raised when the gateway reports the hold was already captured or cancelled."""

    def __init__(self, payment_intent_id: str, gateway_message: Optional[str] = None):
        super().__init__(
            message="Payment has already been captured or cancelled",
            code="PAYMENT_ALREADY_FINALIZED",
            details={
                "payment_intent_id": payment_intent_id,
                "gateway_message": gateway_message or "",
            },
        )


class WebhookSignatureException(ValidationException):
    """Raised when an inbound webhook is missing its body or signature, or fails verification."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="WEBHOOK_SIGNATURE_INVALID")


class PaymentGatewayException(ServiceException):
    """Raised when the payment provider call fails for a reason not handled elsewhere."""

    def __init__(
        self,
        message: str,
        *,
        gateway_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if gateway_code:
            merged["gateway_code"] = gateway_code
        super().__init__(message=message, code="PAYMENT_GATEWAY_ERROR", details=merged)
        self.gateway_code = gateway_code


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as query failures or
    constraint violations.
    """
