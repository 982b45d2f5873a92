# cos-backend/events/state_machine.py
"""
Registration State Machine for e-COS.

Enforces valid lifecycle transitions for a registration:
pending    → confirmed | rejected | cancelled
confirmed  → cancelled
waitlisted → confirmed | cancelled

cancelled and rejected are terminal. Re-registering creates a new row,
it never revives an old one.
"""
from typing import Tuple

from .models import Registration


VALID_TRANSITIONS = {
    Registration.STATUS_PENDING: [
        Registration.STATUS_CONFIRMED,
        Registration.STATUS_REJECTED,
        Registration.STATUS_CANCELLED,
    ],
    Registration.STATUS_CONFIRMED: [Registration.STATUS_CANCELLED],
    Registration.STATUS_WAITLISTED: [
        Registration.STATUS_CONFIRMED,
        Registration.STATUS_CANCELLED,
    ],
    Registration.STATUS_CANCELLED: [],
    Registration.STATUS_REJECTED: [],
}


def can_transition(current_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Check if a registration can move from current_status to new_status.

    Returns (can_transition: bool, reason: str)
    """
    if new_status not in dict(Registration.STATUS_CHOICES):
        return False, f"Invalid status: {new_status}"

    if is_terminal_status(current_status):
        return False, f"Registration is already {current_status}"

    if new_status not in VALID_TRANSITIONS.get(current_status, []):
        return False, f"Cannot transition from '{current_status}' to '{new_status}'"

    return True, ""


def get_allowed_transitions(registration: Registration) -> list:
    return VALID_TRANSITIONS.get(registration.status, [])


def is_terminal_status(status: str) -> bool:
    return status in Registration.TERMINAL_STATUSES
