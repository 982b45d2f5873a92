# events/services/rounds.py
"""
Round progression for multi-round events.

Rounds move forward only (upcoming → ongoing → completed), one ongoing at
a time. Teams move forward only, and every write is idempotent so an
organizer retrying a progression call changes nothing the second time.
Progression calls on one event are serialized on the event row.
"""
import logging

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound

from core.constants import ACTIVITY_ROUND_PROGRESSED, ACTIVITY_ROUND_STATUS_CHANGED
from core.services import ActivityService
from notifications.models import Notification
from notifications.services import notify_on_commit

from ..exceptions import (
    InvalidRoundOrderError,
    InvalidTransitionError,
    NotAllowedError,
    RoundNotFoundError,
    RoundNotOngoingError,
)
from ..models import Event, Registration, Round, Team
from ..permissions import user_can_manage_event

logger = logging.getLogger('cos.events')


def _lock_event(event):
    return Event.objects.select_for_update().get(pk=event.pk)


def get_round(event, number):
    round_obj = Round.objects.filter(event=event, number=number).first()
    if round_obj is None:
        raise RoundNotFoundError(f"Round {number} not found.")
    return round_obj


def seed_first_round(event):
    """
    Put every confirmed registration that has not entered a round yet into
    round 1. Returns how many were moved.
    """
    moved = Registration.objects.filter(
        event=event,
        status=Registration.STATUS_CONFIRMED,
        current_round=0,
        eliminated_in_round__isnull=True,
    ).update(current_round=1, updated_at=timezone.now())

    if moved:
        logger.info(f"Seeded round 1: event={event.pk}, registrations={moved}")
    return moved


def update_round_status(round_obj, new_status, actor):
    if not user_can_manage_event(actor, round_obj.event):
        raise NotAllowedError("Only event organizers can manage rounds.")
    return set_round_status(round_obj, new_status, actor=actor)


def set_round_status(round_obj, new_status, actor=None, now=None):
    """
    Move a round's status forward. Also used by the scheduled sweep,
    which passes no actor.
    """
    now = now or timezone.now()

    if new_status not in Round.STATUS_ORDER:
        raise InvalidTransitionError(f"Invalid round status: {new_status}")

    with transaction.atomic():
        event = _lock_event(round_obj.event)
        round_obj = Round.objects.select_for_update().get(pk=round_obj.pk)
        current = round_obj.status

        if new_status == current:
            return round_obj

        if round_obj.number is None:
            raise InvalidTransitionError("Round has no number. Run repair_round_numbers first.")

        if Round.STATUS_ORDER[new_status] < Round.STATUS_ORDER[current]:
            raise InvalidRoundOrderError(
                f"Cannot revert round status from {current} to {new_status}. "
                f"Status can only progress forward."
            )

        if new_status == Round.STATUS_ONGOING:
            if round_obj.starts_at and now < round_obj.starts_at:
                raise InvalidTransitionError("Cannot start round before its scheduled time.")

            other_ongoing = Round.objects.filter(
                event=event,
                status=Round.STATUS_ONGOING,
            ).exclude(pk=round_obj.pk)
            if other_ongoing.exists():
                raise InvalidTransitionError("Only one round can be ongoing at a time.")

            previous = Round.objects.filter(event=event, number=round_obj.number - 1).first()
            if previous is not None and previous.status != Round.STATUS_COMPLETED:
                raise InvalidRoundOrderError("Previous round must be completed first.")

        if new_status == Round.STATUS_COMPLETED:
            if round_obj.ends_at and now < round_obj.ends_at:
                raise InvalidTransitionError("Cannot complete round before its scheduled time.")

        round_obj.status = new_status
        round_obj.save(update_fields=['status'])

        if new_status == Round.STATUS_ONGOING:
            if event.current_round < round_obj.number:
                event.current_round = round_obj.number
                event.save(update_fields=['current_round'])
            if round_obj.number == 1:
                seed_first_round(event)

        ActivityService.log_activity(
            actor=actor,
            verb=ACTIVITY_ROUND_STATUS_CHANGED,
            target=round_obj,
            metadata={'from': current, 'to': new_status, 'number': round_obj.number},
        )

    logger.info(
        f"Round state transition: event={event.pk}, round={round_obj.number}, "
        f"from={current}, to={new_status}, actor={getattr(actor, 'id', 'system')}"
    )
    return round_obj


def progress_teams(event, team_ids, from_round, to_round, eliminate_rest=False, actor=None):
    """
    Advance the named teams from ``from_round`` to ``to_round``.

    Active registrations of those teams get ``to_round`` appended once to
    ``advanced_to_rounds`` and lose any elimination mark. With
    ``eliminate_rest`` every other active registration still sitting in
    ``from_round`` is eliminated there. Returns a summary dict.
    """
    if not user_can_manage_event(actor, event):
        raise NotAllowedError("Only event organizers can manage rounds.")

    if to_round <= from_round:
        raise InvalidRoundOrderError(
            f"Cannot move teams from round {from_round} to round {to_round}."
        )

    team_ids = sorted(set(team_ids or []))

    with transaction.atomic():
        event = _lock_event(event)

        source = get_round(event, from_round)
        get_round(event, to_round)

        if source.status not in (Round.STATUS_ONGOING, Round.STATUS_COMPLETED):
            raise RoundNotOngoingError(
                f"Round {from_round} is {source.status}; it must be ongoing or completed."
            )

        found = Team.objects.filter(event=event, pk__in=team_ids).count()
        if found != len(team_ids):
            raise NotFound("Some teams not found.")

        now = timezone.now()
        advanced = []
        advancing = (
            Registration.objects.select_for_update()
            .select_related('user')
            .filter(event=event, team_id__in=team_ids, status__in=Registration.ACTIVE_STATUSES)
        )
        for registration in advancing:
            changed = False
            if to_round not in registration.advanced_to_rounds:
                registration.advanced_to_rounds = registration.advanced_to_rounds + [to_round]
                changed = True
            if registration.current_round < to_round:
                registration.current_round = to_round
                changed = True
            if registration.eliminated_in_round is not None:
                registration.eliminated_in_round = None
                changed = True
            if changed:
                registration.updated_at = now
                registration.save(update_fields=[
                    'advanced_to_rounds', 'current_round', 'eliminated_in_round', 'updated_at',
                ])
                advanced.append(registration)

        eliminated = []
        if eliminate_rest:
            rest = (
                Registration.objects.select_for_update()
                .select_related('user')
                .filter(
                    event=event,
                    status__in=Registration.ACTIVE_STATUSES,
                    current_round=from_round,
                    eliminated_in_round__isnull=True,
                )
                .exclude(team_id__in=team_ids)
            )
            for registration in rest:
                registration.eliminated_in_round = from_round
                registration.updated_at = now
                registration.save(update_fields=['eliminated_in_round', 'updated_at'])
                eliminated.append(registration)

        if event.current_round < to_round:
            event.current_round = to_round
            event.save(update_fields=['current_round'])

        if advanced or eliminated:
            ActivityService.log_activity(
                actor=actor,
                verb=ACTIVITY_ROUND_PROGRESSED,
                target=event,
                metadata={
                    'from_round': from_round,
                    'to_round': to_round,
                    'team_ids': team_ids,
                    'advanced': len(advanced),
                    'eliminated': len(eliminated),
                },
            )

        for registration in advanced:
            notify_on_commit(
                registration.user,
                Notification.TYPE_ROUND,
                f"Advanced to round {to_round}",
                body=f"Your team advanced to round {to_round} of {event.title}.",
                event=event,
            )
        for registration in eliminated:
            notify_on_commit(
                registration.user,
                Notification.TYPE_ROUND,
                f"Eliminated in round {from_round}",
                body=f"Thanks for taking part in {event.title}.",
                event=event,
            )

    logger.info(
        f"Teams progressed: event={event.pk}, {from_round} -> {to_round}, "
        f"teams={team_ids}, advanced={len(advanced)}, eliminated={len(eliminated)}"
    )
    return {
        'from_round': from_round,
        'to_round': to_round,
        'teams': team_ids,
        'advanced': len(advanced),
        'eliminated': len(eliminated),
    }
