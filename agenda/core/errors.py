"""Error taxonomy shared by the availability engine, the calendar store and
the booking coordinator.

ValidationError means the caller must correct its input. ConflictError means
another mutation won the race and the caller should re-query availability.
TransientError means nothing was written and the same request may be retried.
FatalError is a malformed request that retrying cannot fix.
"""

import enum
from typing import Any, Optional


class ValidationReason(str, enum.Enum):
    MISSING_SELECTION = "missing_selection"
    LOCATION_NOT_ALLOWED = "location_not_allowed"
    ADDRESS_REQUIRED = "address_required"
    BOOKING_MODE_NOT_ALLOWED = "booking_mode_not_allowed"
    NO_ELIGIBLE_PROFESSIONAL = "no_eligible_professional"
    NO_AVAILABLE_SLOT = "no_available_slot"
    SLOT_UNAVAILABLE = "slot_unavailable"
    PROFESSIONAL_NOT_ELIGIBLE = "professional_not_eligible"
    PROFESSIONAL_BUSY = "professional_busy"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    ACTION_NOT_ALLOWED = "action_not_allowed"
    WRONG_STEP = "wrong_step"
    SERVICE_INACTIVE = "service_inactive"


class ConflictReason(str, enum.Enum):
    PROFESSIONAL_DOUBLE_BOOKED = "professional_double_booked"
    BLOCKED = "blocked"
    SLOT_TAKEN = "slot_taken"
    NO_PROFESSIONAL_FREE = "no_professional_free"


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    code = "scheduling_error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable
        # Filled in by the booking coordinator when it routes a session back
        self.resume_session = None
        self.retry_step = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "retry_step": self.retry_step.value if self.retry_step else None,
            "session": (
                self.resume_session.model_dump(mode="json")
                if self.resume_session is not None
                else None
            ),
        }

    def __repr__(self):
        return f"<{type(self).__name__}(code='{self.code}', message='{self.message}')>"


class ValidationError(SchedulingError):
    def __init__(self, reason: ValidationReason, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.code = reason.value


class NotFoundError(SchedulingError):
    code = "not_found"

    def __init__(self, entity: str, identifier: Any):
        super().__init__(
            f"{entity} {identifier} not found",
            details={"entity": entity, "id": identifier},
        )
        self.entity = entity


class ConflictError(SchedulingError):
    retryable = True

    def __init__(self, reason: ConflictReason, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.code = reason.value


class TransientError(SchedulingError):
    code = "transient_failure"
    retryable = True


class FatalError(SchedulingError):
    code = "malformed_request"
