# events/services/registrations.py
"""
Registration lifecycle: register, cancel, organizer status changes and
check-in.

Every operation that moves a registration into a terminal state does so
inside one transaction that also releases its capacity slot and, for a
paid registration, opens the refund. Nothing here talks to a gateway.
"""
import logging

from django.db import transaction
from django.utils import timezone

from core.constants import (
    ACTIVITY_REGISTRATION_CANCELLED,
    ACTIVITY_REGISTRATION_CHECKED_IN,
    ACTIVITY_REGISTRATION_CREATED,
    ACTIVITY_REGISTRATION_STATUS_CHANGED,
)
from core.services import ActivityService
from notifications.models import Notification
from notifications.services import notify_on_commit

from .. import capacity
from ..exceptions import (
    AlreadyTerminalError,
    CancellationClosedError,
    CheckedInError,
    DeadlinePassedError,
    EventClosedError,
    InvalidTransitionError,
    NotAllowedError,
    NotTeamMemberError,
    TeamRequiredError,
    TeamSizeViolationError,
    TeamStateError,
)
from ..models import Attendance, Event, Registration, Team
from ..permissions import user_can_manage_event
from ..state_machine import can_transition, is_terminal_status

logger = logging.getLogger('cos.events')


def ensure_registration_open(event, now=None):
    now = now or timezone.now()

    if event.status != Event.STATUS_PUBLISHED:
        raise EventClosedError()

    if event.registration_opens_at and now < event.registration_opens_at:
        raise EventClosedError("Registration has not opened yet.")

    if now >= event.registration_deadline:
        raise DeadlinePassedError()


def validate_team_for_registration(event, user, team):
    if team is None:
        raise TeamRequiredError()

    if team.event_id != event.pk:
        raise TeamStateError("Team belongs to a different event.")

    if team.status == Team.STATUS_DISBANDED:
        raise TeamStateError("Team has been disbanded.")

    if not team.memberships.filter(user=user).exists():
        raise NotTeamMemberError()

    size = team.current_size
    if size < event.min_team_size:
        raise TeamSizeViolationError(f"Team must have at least {event.min_team_size} members.")
    if size > event.max_team_size:
        raise TeamSizeViolationError(f"Team cannot have more than {event.max_team_size} members.")


def register(event, user, team=None, notes=""):
    """
    Register user for event.

    Free events confirm immediately; paid events start pending until the
    payment completes. Raises the usual open/team/capacity/duplicate
    errors without writing anything.
    """
    ensure_registration_open(event)

    if event.is_team_event:
        validate_team_for_registration(event, user, team)
    else:
        team = None

    if event.is_paid:
        initial_status = Registration.STATUS_PENDING
        payment_status = Registration.PAYMENT_PENDING
    else:
        initial_status = Registration.STATUS_CONFIRMED
        payment_status = Registration.PAYMENT_NOT_REQUIRED

    with transaction.atomic():
        registration = capacity.try_claim(
            event,
            user,
            team=team,
            status=initial_status,
            payment_status=payment_status,
            notes=notes or "",
        )

        ActivityService.log_activity(
            actor=user,
            verb=ACTIVITY_REGISTRATION_CREATED,
            target=registration,
            metadata={
                'event_id': event.pk,
                'team_id': team.pk if team else None,
                'status': registration.status,
            },
        )

        if registration.status == Registration.STATUS_CONFIRMED:
            body = f"Your registration {registration.registration_number} is confirmed."
        else:
            body = f"Complete the payment to confirm registration {registration.registration_number}."
        notify_on_commit(
            user,
            Notification.TYPE_REGISTRATION,
            f"Registered for {event.title}",
            body=body,
            event=event,
        )

    logger.info(
        f"Registration created: registration={registration.pk}, event={event.pk}, "
        f"user={user.pk}, status={registration.status}"
    )
    return registration


def _lock(registration):
    return (
        Registration.objects.select_for_update()
        .select_related('event')
        .get(pk=registration.pk)
    )


def _has_checked_in(registration) -> bool:
    return Attendance.objects.filter(
        registration_id=registration.pk,
        check_in__isnull=False,
    ).exists()


def _enter_terminal_state(registration, new_status, actor, reason=""):
    """
    Move a locked registration into cancelled or rejected, give its slot
    back and open a refund when money was taken. Caller holds the row lock.

    A paid registration cannot be cancelled once the refund policy would
    return nothing.
    """
    from payments.services import create_refund_for_registration, refund_percentage_for

    paid = registration.payment_status == Registration.PAYMENT_PAID
    if paid and new_status == Registration.STATUS_CANCELLED:
        if refund_percentage_for(registration) <= 0:
            raise CancellationClosedError()

    old_status = registration.status
    registration.status = new_status
    update_fields = ['status', 'updated_at']

    if new_status == Registration.STATUS_CANCELLED:
        registration.cancelled_at = timezone.now()
        registration.cancellation_reason = reason or ""
        update_fields += ['cancelled_at', 'cancellation_reason']

    registration.save(update_fields=update_fields)
    capacity.release(registration)

    if paid:
        create_refund_for_registration(registration, reason=reason or f"Registration {new_status}")

    logger.info(
        f"Registration state transition: registration={registration.pk}, "
        f"from={old_status}, to={new_status}, actor={getattr(actor, 'id', 'unknown')}"
    )


def cancel(registration, requester, reason=None):
    """
    Cancel a registration on behalf of its owner or an event manager.

    Cancelling an already cancelled registration returns it unchanged.
    """
    event = registration.event
    if registration.user_id != requester.pk and not user_can_manage_event(requester, event):
        raise NotAllowedError("You are not authorized to cancel this registration.")

    with transaction.atomic():
        registration = _lock(registration)

        if registration.status == Registration.STATUS_CANCELLED:
            logger.info(f"Registration already cancelled: registration={registration.pk}")
            return registration

        if registration.status == Registration.STATUS_REJECTED:
            raise AlreadyTerminalError("Registration was rejected and cannot be cancelled.")

        if _has_checked_in(registration):
            raise CheckedInError("Cannot cancel after check-in.")

        _enter_terminal_state(
            registration,
            Registration.STATUS_CANCELLED,
            actor=requester,
            reason=reason or "",
        )

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_REGISTRATION_CANCELLED,
            target=registration,
            metadata={'event_id': registration.event_id, 'reason': reason or ""},
        )
        notify_on_commit(
            registration.user,
            Notification.TYPE_REGISTRATION,
            f"Registration cancelled for {registration.event.title}",
            body=reason or "",
            event=registration.event,
        )

    return registration


def expire_unpaid(registration, reason="Payment not received in time"):
    """
    Cancel a pending registration whose payment never arrived. Returns
    True if it was cancelled, False if it moved on in the meantime.
    """
    with transaction.atomic():
        registration = _lock(registration)

        if (
            registration.status != Registration.STATUS_PENDING
            or registration.payment_status != Registration.PAYMENT_PENDING
        ):
            return False

        _enter_terminal_state(registration, Registration.STATUS_CANCELLED, actor=None, reason=reason)

        ActivityService.log_activity(
            actor=None,
            verb=ACTIVITY_REGISTRATION_CANCELLED,
            target=registration,
            metadata={'event_id': registration.event_id, 'reason': reason, 'automatic': True},
        )
        notify_on_commit(
            registration.user,
            Notification.TYPE_REGISTRATION,
            f"Registration expired for {registration.event.title}",
            body=reason,
            event=registration.event,
        )

    return True


def update_status(registration, new_status, actor, reason=None):
    """
    Organizer-driven status change, validated against VALID_TRANSITIONS.
    """
    if not user_can_manage_event(actor, registration.event):
        raise NotAllowedError("Only event organizers can change registration status.")

    with transaction.atomic():
        registration = _lock(registration)
        old_status = registration.status

        if new_status == old_status:
            return registration

        can, message = can_transition(old_status, new_status)
        if not can:
            logger.warning(
                f"Invalid registration transition attempted: registration={registration.pk}, "
                f"from={old_status}, to={new_status}, actor={getattr(actor, 'id', 'unknown')}. "
                f"Reason: {message}"
            )
            if is_terminal_status(old_status):
                raise AlreadyTerminalError(message)
            raise InvalidTransitionError(message)

        if is_terminal_status(new_status):
            if _has_checked_in(registration):
                raise CheckedInError()
            _enter_terminal_state(registration, new_status, actor=actor, reason=reason or "")
        else:
            registration.status = new_status
            registration.save(update_fields=['status', 'updated_at'])
            logger.info(
                f"Registration state transition: registration={registration.pk}, "
                f"from={old_status}, to={new_status}, actor={getattr(actor, 'id', 'unknown')}"
            )

        ActivityService.log_activity(
            actor=actor,
            verb=ACTIVITY_REGISTRATION_STATUS_CHANGED,
            target=registration,
            metadata={'from': old_status, 'to': new_status, 'reason': reason or ""},
        )
        notify_on_commit(
            registration.user,
            Notification.TYPE_REGISTRATION,
            f"Registration {new_status} for {registration.event.title}",
            body=reason or "",
            event=registration.event,
        )

    return registration


def check_in(registration, actor):
    """
    Record attendance for a confirmed registration. Checking in twice
    returns the existing attendance.
    """
    if not user_can_manage_event(actor, registration.event):
        raise NotAllowedError("Only event organizers can check in participants.")

    with transaction.atomic():
        registration = _lock(registration)

        if registration.status != Registration.STATUS_CONFIRMED:
            raise InvalidTransitionError("Only confirmed registrations can be checked in.")

        attendance, _ = Attendance.objects.select_for_update().get_or_create(
            registration=registration,
        )
        if attendance.check_in:
            return attendance

        attendance.check_in = timezone.now()
        attendance.checked_in_by = actor
        attendance.save(update_fields=['check_in', 'checked_in_by'])

        ActivityService.log_activity(
            actor=actor,
            verb=ACTIVITY_REGISTRATION_CHECKED_IN,
            target=registration,
            metadata={'event_id': registration.event_id},
        )

    logger.info(f"Checked in: registration={registration.pk}, by={actor.pk}")
    return attendance
