from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from events import capacity
from events.exceptions import (
    AlreadyTerminalError,
    CheckedInError,
    DeadlinePassedError,
    EventClosedError,
    InvalidTransitionError,
    NotAllowedError,
    NotTeamMemberError,
    TeamRequiredError,
    TeamSizeViolationError,
)
from events.models import Event, Registration
from events.services import registrations, teams
from events.state_machine import can_transition, get_allowed_transitions
from events.tasks import cancel_unpaid_registrations
from notifications.models import Notification

from .utils import make_event, make_user


class RegisterTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(self.organizer)

    def test_free_event_confirms_immediately(self):
        with self.captureOnCommitCallbacks(execute=True):
            reg = registrations.register(self.event, self.alice, notes="veggie")

        self.assertEqual(reg.status, Registration.STATUS_CONFIRMED)
        self.assertEqual(reg.payment_status, Registration.PAYMENT_NOT_REQUIRED)
        self.assertEqual(reg.notes, "veggie")
        self.assertTrue(
            Notification.objects.filter(user=self.alice, type=Notification.TYPE_REGISTRATION).exists()
        )

    def test_paid_event_starts_pending(self):
        self.event.is_paid = True
        self.event.amount = 250
        self.event.save()

        reg = registrations.register(self.event, self.alice)

        self.assertEqual(reg.status, Registration.STATUS_PENDING)
        self.assertEqual(reg.payment_status, Registration.PAYMENT_PENDING)
        self.assertEqual(capacity.registered_count(self.event), 1)

    def test_draft_event_is_closed(self):
        self.event.status = Event.STATUS_DRAFT
        self.event.save()

        with self.assertRaises(EventClosedError):
            registrations.register(self.event, self.alice)

    def test_not_yet_open(self):
        self.event.registration_opens_at = timezone.now() + timedelta(days=1)
        self.event.save()

        with self.assertRaises(EventClosedError):
            registrations.register(self.event, self.alice)

    def test_deadline_passed(self):
        self.event.registration_deadline = timezone.now() - timedelta(minutes=1)
        self.event.save()

        with self.assertRaises(DeadlinePassedError):
            registrations.register(self.event, self.alice)
        self.assertEqual(capacity.registered_count(self.event), 0)


class TeamRegistrationTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.leader = make_user("leader")
        self.mate = make_user("mate")
        self.outsider = make_user("outsider")
        self.event = make_event(self.organizer, min_team_size=2, max_team_size=3)
        self.team = teams.create_team(self.event, self.leader, "Rocket")

    def test_team_required(self):
        with self.assertRaises(TeamRequiredError):
            registrations.register(self.event, self.leader)

    def test_team_too_small(self):
        with self.assertRaises(TeamSizeViolationError):
            registrations.register(self.event, self.leader, team=self.team)

    def test_non_member_refused(self):
        teams.join_team(self.team.invite_code, self.mate)

        with self.assertRaises(NotTeamMemberError):
            registrations.register(self.event, self.outsider, team=self.team)

    def test_member_registers_with_team(self):
        teams.join_team(self.team.invite_code, self.mate)

        reg = registrations.register(self.event, self.mate, team=self.team)

        self.assertEqual(reg.team, self.team)
        self.assertEqual(reg.status, Registration.STATUS_CONFIRMED)


class CancelTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.mallory = make_user("mallory")
        self.event = make_event(self.organizer)
        self.reg = registrations.register(self.event, self.alice)

    def test_owner_cancels(self):
        reg = registrations.cancel(self.reg, self.alice, reason="Can't make it")

        self.assertEqual(reg.status, Registration.STATUS_CANCELLED)
        self.assertEqual(reg.cancellation_reason, "Can't make it")
        self.assertIsNotNone(reg.cancelled_at)
        self.assertEqual(capacity.registered_count(self.event), 0)

    def test_cancel_twice_is_noop(self):
        registrations.cancel(self.reg, self.alice)
        reg = registrations.cancel(self.reg, self.alice)

        self.assertEqual(reg.status, Registration.STATUS_CANCELLED)
        self.assertEqual(capacity.registered_count(self.event), 0)

    def test_organizer_may_cancel(self):
        reg = registrations.cancel(self.reg, self.organizer)
        self.assertEqual(reg.status, Registration.STATUS_CANCELLED)

    def test_stranger_may_not_cancel(self):
        with self.assertRaises(NotAllowedError):
            registrations.cancel(self.reg, self.mallory)

    def test_rejected_cannot_be_cancelled(self):
        self.event.is_paid = True
        self.event.save()
        reg = registrations.register(self.event, self.mallory)
        registrations.update_status(reg, Registration.STATUS_REJECTED, self.organizer)

        with self.assertRaises(AlreadyTerminalError):
            registrations.cancel(reg, self.mallory)

    def test_cannot_cancel_after_check_in(self):
        registrations.check_in(self.reg, self.organizer)

        with self.assertRaises(CheckedInError):
            registrations.cancel(self.reg, self.alice)

        self.reg.refresh_from_db()
        self.assertEqual(self.reg.status, Registration.STATUS_CONFIRMED)


class UpdateStatusTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(self.organizer, is_paid=True, amount=100)
        self.reg = registrations.register(self.event, self.alice)

    def test_transition_table(self):
        self.assertEqual(can_transition("pending", "confirmed"), (True, ""))
        allowed, reason = can_transition("confirmed", "pending")
        self.assertFalse(allowed)
        self.assertTrue(reason)
        self.assertEqual(get_allowed_transitions(self.reg), ["confirmed", "rejected", "cancelled"])

    def test_organizer_confirms(self):
        reg = registrations.update_status(self.reg, Registration.STATUS_CONFIRMED, self.organizer)
        self.assertEqual(reg.status, Registration.STATUS_CONFIRMED)

    def test_same_status_is_noop(self):
        reg = registrations.update_status(self.reg, Registration.STATUS_PENDING, self.organizer)
        self.assertEqual(reg.status, Registration.STATUS_PENDING)

    def test_backwards_transition_refused(self):
        registrations.update_status(self.reg, Registration.STATUS_CONFIRMED, self.organizer)

        with self.assertRaises(InvalidTransitionError):
            registrations.update_status(self.reg, Registration.STATUS_PENDING, self.organizer)

    def test_terminal_registration_stays_terminal(self):
        registrations.update_status(self.reg, Registration.STATUS_REJECTED, self.organizer, reason="Spam")

        with self.assertRaises(AlreadyTerminalError):
            registrations.update_status(self.reg, Registration.STATUS_CONFIRMED, self.organizer)

    def test_rejection_releases_capacity(self):
        registrations.update_status(self.reg, Registration.STATUS_REJECTED, self.organizer)

        self.assertEqual(capacity.registered_count(self.event), 0)
        self.reg.refresh_from_db()
        self.assertTrue(self.reg.capacity_released)

    def test_participant_cannot_change_status(self):
        with self.assertRaises(NotAllowedError):
            registrations.update_status(self.reg, Registration.STATUS_CONFIRMED, self.alice)


class CheckInTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(self.organizer)
        self.reg = registrations.register(self.event, self.alice)

    def test_check_in_is_idempotent(self):
        first = registrations.check_in(self.reg, self.organizer)
        second = registrations.check_in(self.reg, self.organizer)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.check_in, second.check_in)
        self.assertEqual(first.checked_in_by, self.organizer)

    def test_only_confirmed_can_check_in(self):
        registrations.cancel(self.reg, self.alice)

        with self.assertRaises(InvalidTransitionError):
            registrations.check_in(self.reg, self.organizer)

    def test_participant_cannot_check_in(self):
        with self.assertRaises(NotAllowedError):
            registrations.check_in(self.reg, self.alice)


class ExpireUnpaidTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(self.organizer, is_paid=True, amount=100)
        self.reg = registrations.register(self.event, self.alice)

    def test_expire_unpaid_once(self):
        self.assertTrue(registrations.expire_unpaid(self.reg))
        self.assertFalse(registrations.expire_unpaid(self.reg))

        self.reg.refresh_from_db()
        self.assertEqual(self.reg.status, Registration.STATUS_CANCELLED)
        self.assertEqual(capacity.registered_count(self.event), 0)

    def test_sweep_cancels_only_stale_registrations(self):
        bob = make_user("bob")
        fresh = registrations.register(self.event, bob)
        Registration.objects.filter(pk=self.reg.pk).update(
            created_at=timezone.now() - timedelta(hours=48),
        )

        self.assertEqual(cancel_unpaid_registrations(), 1)

        self.reg.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(self.reg.status, Registration.STATUS_CANCELLED)
        self.assertEqual(fresh.status, Registration.STATUS_PENDING)
