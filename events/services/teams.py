# events/services/teams.py
"""
Team membership engine.

Membership changes lock the team row first and then the joining user's
row, so ``members <= max_size`` and "one live team per user per event"
hold under concurrent joins. A locked team refuses every change except
``unlock``.
"""
import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from rest_framework.exceptions import NotFound

from core.constants import (
    ACTIVITY_TEAM_CREATED,
    ACTIVITY_TEAM_DISBANDED,
    ACTIVITY_TEAM_JOINED,
    ACTIVITY_TEAM_LEADER_CHANGED,
    ACTIVITY_TEAM_LEFT,
    ACTIVITY_TEAM_LOCKED,
    ACTIVITY_TEAM_MEMBER_REMOVED,
    ACTIVITY_TEAM_UNLOCKED,
)
from core.services import ActivityService
from notifications.models import Notification
from notifications.services import notify_on_commit

from ..exceptions import (
    AlreadyInTeamError,
    NotAllowedError,
    NotTeamMemberError,
    TeamFullError,
    TeamLockedError,
    TeamSizeViolationError,
    TeamStateError,
)
from ..models import Registration, Team, TeamMembership

logger = logging.getLogger('cos.events')


def _lock_team(team):
    return Team.objects.select_for_update().select_related('event').get(pk=team.pk)


def _lock_user(user):
    return get_user_model().objects.select_for_update().get(pk=user.pk)


def _ensure_leader(team, user, action):
    if team.leader_id != user.pk:
        raise NotAllowedError(f"Only team leader can {action}.")


def _ensure_mutable(team):
    if team.status == Team.STATUS_DISBANDED:
        raise TeamStateError("This team has been disbanded.")
    if team.status == Team.STATUS_LOCKED:
        raise TeamLockedError()


def _ensure_not_in_other_team(event, user, exclude_team=None):
    qs = TeamMembership.objects.filter(
        user=user,
        team__event=event,
    ).exclude(team__status=Team.STATUS_DISBANDED)
    if exclude_team is not None:
        qs = qs.exclude(team=exclude_team)
    if qs.exists():
        raise AlreadyInTeamError()


def _add_member_locked(team, user):
    if team.memberships.filter(user=user).exists():
        raise AlreadyInTeamError("User is already a member of this team.")

    _ensure_not_in_other_team(team.event, user, exclude_team=team)

    size = team.current_size
    if size >= team.max_size:
        raise TeamFullError(f"This team is full ({size}/{team.max_size} members).")

    return TeamMembership.objects.create(team=team, user=user)


def create_team(event, leader, name, description=None):
    if not event.is_team_event:
        raise TeamStateError("This event does not allow team registration.")

    with transaction.atomic():
        _lock_user(leader)
        _ensure_not_in_other_team(event, leader)

        try:
            with transaction.atomic():
                team = Team.objects.create(
                    event=event,
                    name=name,
                    description=description,
                    leader=leader,
                    max_size=event.max_team_size,
                )
        except IntegrityError as exc:
            raise TeamStateError("A team with this name already exists for this event.") from exc
        TeamMembership.objects.create(team=team, user=leader)

        ActivityService.log_activity(
            actor=leader,
            verb=ACTIVITY_TEAM_CREATED,
            target=team,
            metadata={'event_id': event.pk, 'name': name},
        )

    logger.info(f"Team created: team={team.pk}, event={event.pk}, leader={leader.pk}")
    return team


def join_team(invite_code, user):
    code = (invite_code or "").strip().upper()
    team = Team.objects.filter(invite_code=code).first()
    if team is None:
        raise NotFound("Invalid invite code. Please check the code and try again.")

    with transaction.atomic():
        team = _lock_team(team)
        _ensure_mutable(team)
        _lock_user(user)
        _add_member_locked(team, user)

        ActivityService.log_activity(
            actor=user,
            verb=ACTIVITY_TEAM_JOINED,
            target=team,
            metadata={'via': 'invite_code'},
        )
        notify_on_commit(
            team.leader,
            Notification.TYPE_TEAM,
            f"New member in {team.name}",
            body=f"{user.username} joined your team.",
            event=team.event,
        )

    logger.info(f"Team joined: team={team.pk}, user={user.pk}")
    return team


def add_member(team, new_member, requester):
    with transaction.atomic():
        team = _lock_team(team)
        _ensure_leader(team, requester, "add members")
        _ensure_mutable(team)
        _lock_user(new_member)
        _add_member_locked(team, new_member)

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_TEAM_JOINED,
            target=team,
            metadata={'user_id': new_member.pk, 'via': 'leader'},
        )
        notify_on_commit(
            new_member,
            Notification.TYPE_TEAM,
            f"Added to {team.name}",
            body=f"You were added to team {team.name} for {team.event.title}.",
            event=team.event,
        )

    logger.info(f"Team member added: team={team.pk}, user={new_member.pk}, by={requester.pk}")
    return team


def remove_member(team, member_id, requester):
    """
    Leader removes a member, or a member removes themselves. The leader
    cannot be removed; leadership must be transferred first.
    """
    with transaction.atomic():
        team = _lock_team(team)

        if team.leader_id != requester.pk and member_id != requester.pk:
            raise NotAllowedError("Not authorized to remove this member.")

        if team.leader_id == member_id:
            raise TeamStateError("Team leader cannot be removed. Transfer leadership or disband team.")

        _ensure_mutable(team)

        deleted, _ = TeamMembership.objects.filter(team=team, user_id=member_id).delete()
        if not deleted:
            raise NotTeamMemberError("User is not a member of this team.")

        verb = ACTIVITY_TEAM_LEFT if member_id == requester.pk else ACTIVITY_TEAM_MEMBER_REMOVED
        ActivityService.log_activity(
            actor=requester,
            verb=verb,
            target=team,
            metadata={'user_id': member_id},
        )

    logger.info(f"Team member removed: team={team.pk}, user={member_id}, by={requester.pk}")
    return team


def leave_team(team, user):
    return remove_member(team, user.pk, user)


def transfer_leadership(team, new_leader_id, requester):
    with transaction.atomic():
        team = _lock_team(team)
        _ensure_leader(team, requester, "transfer leadership")
        _ensure_mutable(team)

        if not team.memberships.filter(user_id=new_leader_id).exists():
            raise NotTeamMemberError("New leader must be a team member.")

        old_leader_id = team.leader_id
        team.leader_id = new_leader_id
        team.save(update_fields=['leader'])

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_TEAM_LEADER_CHANGED,
            target=team,
            metadata={'from': old_leader_id, 'to': new_leader_id},
        )

    logger.info(f"Team leadership transferred: team={team.pk}, {old_leader_id} -> {new_leader_id}")
    return team


def lock(team, requester):
    with transaction.atomic():
        team = _lock_team(team)
        _ensure_leader(team, requester, "lock the team")
        _ensure_mutable(team)

        size = team.current_size
        if size < team.event.min_team_size:
            raise TeamSizeViolationError(
                f"Team needs at least {team.event.min_team_size} members before locking."
            )

        team.status = Team.STATUS_LOCKED
        team.save(update_fields=['status'])

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_TEAM_LOCKED,
            target=team,
            metadata={'members': size},
        )

    logger.info(f"Team locked: team={team.pk}")
    return team


def unlock(team, requester):
    with transaction.atomic():
        team = _lock_team(team)
        _ensure_leader(team, requester, "unlock the team")

        if team.status != Team.STATUS_LOCKED:
            raise TeamStateError("Team is not locked.")

        if Registration.objects.filter(team=team, status__in=Registration.ACTIVE_STATUSES).exists():
            raise TeamStateError(
                "Cannot unlock team with existing registrations. "
                "Team members must cancel their registrations first."
            )

        team.status = Team.STATUS_ACTIVE
        team.save(update_fields=['status'])

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_TEAM_UNLOCKED,
            target=team,
        )

    logger.info(f"Team unlocked: team={team.pk}")
    return team


def disband(team, requester):
    with transaction.atomic():
        team = _lock_team(team)
        _ensure_leader(team, requester, "disband the team")
        _ensure_mutable(team)

        if Registration.objects.filter(team=team, status__in=Registration.ACTIVE_STATUSES).exists():
            raise TeamStateError("Cannot disband team with active registrations.")

        team.status = Team.STATUS_DISBANDED
        team.save(update_fields=['status'])

        ActivityService.log_activity(
            actor=requester,
            verb=ACTIVITY_TEAM_DISBANDED,
            target=team,
        )
        for membership in team.memberships.select_related('user').exclude(user_id=requester.pk):
            notify_on_commit(
                membership.user,
                Notification.TYPE_TEAM,
                f"{team.name} was disbanded",
                event=team.event,
            )

    logger.info(f"Team disbanded: team={team.pk}")
    return team
