"""Error taxonomy for the booking engine.

Every error carries a stable machine-readable ``code`` and an HTTP status so the
blueprint can render it as ``{"error": code, "message": message}``.
"""
from __future__ import annotations

from flask import Flask, jsonify


class BookingError(Exception):
    code = "error"
    status_code = 400
    retryable = False
    default_message = "The request could not be completed"

    def __init__(self, message: str | None = None, **details: object) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(BookingError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class ProviderNotFound(NotFound):
    code = "provider_not_found"
    default_message = "Provider not found"


class ServiceNotFound(NotFound):
    code = "service_not_found"
    default_message = "Service not found"


class AppointmentNotFound(NotFound):
    code = "appointment_not_found"
    default_message = "Appointment not found"


class StaffNotFound(NotFound):
    code = "staff_not_found"
    default_message = "Staff member not found"


class WaitlistEntryNotFound(NotFound):
    code = "waitlist_entry_not_found"
    default_message = "Waitlist entry not found"


class InvalidInput(BookingError):
    code = "invalid_input"
    default_message = "Invalid input"


class ServiceInactive(BookingError):
    code = "service_inactive"
    status_code = 409
    default_message = "Service is not currently offered"


class PolicyViolation(BookingError):
    code = "policy_violation"
    status_code = 422
    default_message = "The requested time violates the provider's booking policy"


class SlotConflict(BookingError):
    code = "slot_conflict"
    status_code = 409
    retryable = True
    default_message = "This time slot is no longer available"


class InvalidStateTransition(BookingError):
    code = "invalid_state_transition"
    status_code = 409
    default_message = "The appointment cannot change to the requested state"


class AlreadyReviewed(InvalidStateTransition):
    code = "already_reviewed"
    default_message = "This appointment has already been reviewed"


class AlreadyWaitlisted(InvalidStateTransition):
    code = "already_waitlisted"
    default_message = "You are already on the waitlist for this service on this date"


class NoActiveStaff(BookingError):
    code = "no_active_staff"
    status_code = 409
    default_message = "The provider has no active staff members"


class Timeout(BookingError):
    code = "timeout"
    status_code = 503
    retryable = True
    default_message = "The operation timed out, please retry"


class DependencyUnavailable(BookingError):
    code = "dependency_unavailable"
    status_code = 502
    retryable = True
    default_message = "An upstream service is unavailable"


class CustomerUnauthenticated(BookingError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required. Please log in to continue."


class Forbidden(BookingError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(BookingError)
    def handle_booking_error(exc: BookingError):
        if exc.status_code >= 500:
            app.logger.warning("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code
