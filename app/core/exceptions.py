"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Every AppException renders as ``{"ok": false, "error": CODE, "message": ..., "details": ...}``.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Instructor gates
    ONBOARDING_REQUIRED = "ONBOARDING_REQUIRED"
    PILOT_ONLY = "PILOT_ONLY"

    # Booking errors
    INVALID_BOOKING_TRANSITION = "INVALID_BOOKING_TRANSITION"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"

    # Conversation / draft errors
    DRAFT_NOT_ACTIONABLE = "DRAFT_NOT_ACTIONABLE"

    # External service errors
    INGESTION_FAILED = "INGESTION_FAILED"
    AI_TIMEOUT = "AI_TIMEOUT"
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"
    AI_PARSE_ERROR = "AI_PARSE_ERROR"
    AI_RATE_LIMIT = "AI_RATE_LIMIT"
    AI_CIRCUIT_OPEN = "AI_CIRCUIT_OPEN"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "ok": False,
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class InvalidPayloadException(AppException):
    """Raised when a request body fails domain validation"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_PAYLOAD,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=ErrorCode.NOT_FOUND,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class ForbiddenException(AppException):
    """Raised when the caller does not own the resource"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"Not allowed to access {resource} {identifier}",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details={"resource": resource, "identifier": str(identifier)}
        )


class UnauthorizedException(AppException):
    def __init__(self, message: str = "Missing or invalid credentials"):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class OnboardingRequiredException(AppException):
    """Raised when an instructor has not finished onboarding"""

    def __init__(self, instructor_id: int):
        super().__init__(
            message="Instructor onboarding is not complete",
            error_code=ErrorCode.ONBOARDING_REQUIRED,
            status_code=403,
            details={"instructor_id": instructor_id}
        )


class PilotOnlyException(AppException):
    """Raised when a pilot-gated action is used outside the allowlist"""

    def __init__(self, instructor_id: int):
        super().__init__(
            message="This action is only available to pilot instructors",
            error_code=ErrorCode.PILOT_ONLY,
            status_code=402,
            details={"instructor_id": instructor_id}
        )


class InvalidBookingTransitionError(AppException):
    """Raised when a booking status transition is not an allowed edge"""

    def __init__(self, current_state: str, target_state: str, booking_id: int | None = None):
        super().__init__(
            message=f"Invalid booking transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_BOOKING_TRANSITION,
            status_code=409,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "booking_id": booking_id,
            }
        )
        self.current_state = current_state
        self.target_state = target_state


class InvalidTimeRangeException(AppException):
    def __init__(self, start_time: Any, end_time: Any):
        super().__init__(
            message="end_time must be after start_time",
            error_code=ErrorCode.INVALID_TIME_RANGE,
            status_code=400,
            details={"start_time": str(start_time), "end_time": str(end_time)}
        )


class DraftNotActionableError(AppException):
    """Raised when a draft is superseded, expired or already acted upon"""

    def __init__(self, draft_id: int, effective_state: str):
        super().__init__(
            message=f"Draft {draft_id} is '{effective_state}' and can no longer be acted upon",
            error_code=ErrorCode.DRAFT_NOT_ACTIONABLE,
            status_code=409,
            details={"draft_id": draft_id, "effective_state": effective_state}
        )


class IngestionFailedError(AppException):
    """Raised when an inbound message could not be durably stored"""

    def __init__(self, external_message_id: str | None, reason: str):
        super().__init__(
            message="Inbound message could not be persisted",
            error_code=ErrorCode.INGESTION_FAILED,
            status_code=503,
            details={"external_message_id": external_message_id, "reason": reason}
        )


class SoftAIFailure(AppException):
    """
    AI task failure that must never reach the caller.

    Raised inside AI clients and converted into an ``AITaskResult`` by the
    task runner. Nothing outside ``app.domain.services.ai`` should see it.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AI_PROVIDER_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )


class CircuitBreakerOpenError(SoftAIFailure):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.AI_CIRCUIT_OPEN,
            details={"service": service_name, "retry_after_seconds": retry_after_seconds}
        )
