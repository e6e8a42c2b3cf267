"""Scheduling error kinds.

Every failure the engine reports to a caller is one of these. Each carries the
HTTP status the API surfaces and a human-readable ``detail``; the API layer
renders them through a single exception handler registered in ``main.py``.
"""

from typing import Optional


class SchedulingError(Exception):
    status_code = 400
    code = "scheduling_error"
    default_detail = "Scheduling request failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidDuration(SchedulingError):
    code = "invalid_duration"
    default_detail = (
        "Duration must be a multiple of 15 minutes (15, 30, 45, 60, etc.) "
        "and between 15-120 minutes"
    )


class InvalidWindow(SchedulingError):
    code = "invalid_window"
    default_detail = "Time window must end after it starts"


class OutsideAvailability(SchedulingError):
    code = "outside_availability"
    default_detail = "Appointment time is outside the provider's working hours"


class SlotUnavailable(SchedulingError):
    status_code = 409
    code = "slot_unavailable"
    default_detail = "Provider is not available at this time"


class IllegalTransition(SchedulingError):
    status_code = 409
    code = "illegal_transition"

    def __init__(self, current: str, target: str, detail: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(detail or f"Cannot change status from {current} to {target}")


class IllegalState(SchedulingError):
    status_code = 409
    code = "illegal_state"
    default_detail = "Appointment is not in a state that allows this action"


class NotAuthorized(SchedulingError):
    status_code = 403
    code = "not_authorized"
    default_detail = "You are not authorized to perform this action on this appointment"


class DeadlinePassed(SchedulingError):
    """Confirmation came in after the deadline; the appointment was canceled instead."""

    status_code = 409
    code = "deadline_passed"
    default_detail = "Confirmation deadline has passed. Appointment has been automatically canceled."

    def __init__(self, appointment=None, detail: Optional[str] = None):
        self.appointment = appointment
        super().__init__(detail)


class NotFound(SchedulingError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found"
