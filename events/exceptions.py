# events/exceptions.py
"""
Registration, team and round errors.

Invariant violations and ordering violations are 4xx and never retried
automatically. Views do not catch these; core.exceptions renders them.
"""
from rest_framework import status

from core.exceptions import DomainError


# ---- Invariant violations ---------------------------------------------

class DuplicateRegistrationError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "You already have an active registration for this event."
    default_code = "duplicate_registration"


class CapacityExceededError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Event is full."
    default_code = "capacity_exceeded"


class TeamFullError(DomainError):
    default_detail = "This team is full."
    default_code = "team_full"


class TeamLockedError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Team is locked and its membership cannot change."
    default_code = "team_locked"


class TeamSizeViolationError(DomainError):
    default_detail = "Team size is outside the limits allowed for this event."
    default_code = "team_size_violation"


class TeamRequiredError(DomainError):
    default_detail = "A team is required to register for this event."
    default_code = "team_required"


class NotTeamMemberError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not a member of this team."
    default_code = "not_team_member"


class TeamStateError(DomainError):
    default_detail = "Team cannot perform this action in its current state."
    default_code = "team_state"


class AlreadyInTeamError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "User is already part of a team for this event."
    default_code = "already_in_team"


# ---- Temporal / ordering violations -----------------------------------

class EventClosedError(DomainError):
    default_detail = "Event is not open for registration."
    default_code = "event_closed"


class DeadlinePassedError(DomainError):
    default_detail = "Registration deadline has passed."
    default_code = "deadline_passed"


class AlreadyTerminalError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Registration is already closed."
    default_code = "already_terminal"


class InvalidTransitionError(DomainError):
    default_detail = "Status transition is not allowed."
    default_code = "invalid_transition"


class CheckedInError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Registration has already been checked in."
    default_code = "checked_in"


class CancellationClosedError(DomainError):
    default_detail = "Cannot cancel a paid registration this close to the event start."
    default_code = "cancellation_closed"


class InvalidRoundOrderError(DomainError):
    default_detail = "Teams can only progress to a later round."
    default_code = "invalid_round_order"


class RoundNotOngoingError(DomainError):
    default_detail = "Round must be ongoing or completed before teams progress."
    default_code = "round_not_ongoing"


class RoundNotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Round not found."
    default_code = "round_not_found"


# ---- Authorization -----------------------------------------------------

class NotAllowedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You do not have permission to perform this action."
    default_code = "not_allowed"
