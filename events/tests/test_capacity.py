from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.db.models import F
from django.test import TestCase

from events import capacity
from events.exceptions import CapacityExceededError, DuplicateRegistrationError
from events.models import CapacityCounter, Registration
from events.services import registrations

from .utils import make_event, make_user


class CapacityGuardTestCase(TestCase):
    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.bob = make_user("bob")
        self.event = make_event(self.organizer, max_participants=1)

    def test_counter_created_with_event(self):
        self.assertTrue(CapacityCounter.objects.filter(event=self.event).exists())
        self.assertEqual(capacity.registered_count(self.event), 0)

    def test_claim_assigns_registration_number(self):
        reg = capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)
        self.assertEqual(reg.registration_number, f"REG-{reg.created_at.year}-{reg.pk:06d}")
        self.assertEqual(capacity.registered_count(self.event), 1)

    def test_full_event_refuses_and_writes_nothing(self):
        capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)

        with self.assertRaises(CapacityExceededError):
            capacity.try_claim(self.event, self.bob, status=Registration.STATUS_CONFIRMED)

        self.assertFalse(Registration.objects.filter(event=self.event, user=self.bob).exists())
        self.assertEqual(capacity.registered_count(self.event), 1)

    def test_duplicate_active_registration_refused(self):
        self.event.max_participants = 5
        self.event.save()
        capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)

        with self.assertRaises(DuplicateRegistrationError):
            capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)

        self.assertEqual(Registration.objects.filter(event=self.event, user=self.alice).count(), 1)
        self.assertEqual(capacity.registered_count(self.event), 1)

    def test_unbounded_event_accepts_everyone(self):
        self.event.max_participants = None
        self.event.save()

        for i in range(5):
            capacity.try_claim(self.event, make_user(f"user{i}"), status=Registration.STATUS_CONFIRMED)

        self.assertEqual(capacity.registered_count(self.event), 5)

    def test_release_happens_once(self):
        reg = capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)

        self.assertTrue(capacity.release(reg))
        self.assertFalse(capacity.release(reg))

        self.assertEqual(capacity.registered_count(self.event), 0)
        reg.refresh_from_db()
        self.assertTrue(reg.capacity_released)

    def test_cancel_and_reregister_cycles_keep_counter_exact(self):
        for _ in range(3):
            reg = registrations.register(self.event, self.alice)
            self.assertEqual(capacity.registered_count(self.event), 1)
            registrations.cancel(reg, self.alice)
            self.assertEqual(capacity.registered_count(self.event), 0)

        # The freed slot is really free
        registrations.register(self.event, self.bob)
        self.assertEqual(capacity.registered_count(self.event), 1)
        self.assertEqual(
            Registration.objects.filter(event=self.event, status=Registration.STATUS_CANCELLED).count(),
            3,
        )

    def test_resync_counter_repairs_drift(self):
        capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)
        CapacityCounter.objects.filter(event=self.event).update(registered_count=7)

        self.assertEqual(capacity.resync_counter(self.event), (7, 1))
        self.assertEqual(capacity.registered_count(self.event), 1)

    def test_sync_capacity_counters_command(self):
        CapacityCounter.objects.filter(event=self.event).update(registered_count=4)
        out = StringIO()

        call_command("sync_capacity_counters", stdout=out)

        self.assertIn("4 -> 0", out.getvalue())
        self.assertEqual(capacity.registered_count(self.event), 0)


class InterleavedClaimTestCase(TestCase):
    """
    A competing claim commits between this claim's insert and its counter
    update. The conditional update has to refuse on the stored count, not
    on the counter row read when the claim started.
    """

    def setUp(self):
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(self.organizer, max_participants=1)

    def claim_against_competitor(self, user):
        real_create = Registration.objects.create

        def create_then_compete(**kwargs):
            registration = real_create(**kwargs)
            CapacityCounter.objects.filter(event=self.event).update(
                registered_count=F("registered_count") + 1,
            )
            return registration

        with mock.patch.object(Registration.objects, "create", side_effect=create_then_compete):
            return capacity.try_claim(self.event, user, status=Registration.STATUS_CONFIRMED)

    def test_last_seat_taken_mid_claim(self):
        with self.assertRaises(CapacityExceededError):
            self.claim_against_competitor(self.alice)

        self.assertFalse(Registration.objects.filter(event=self.event, user=self.alice).exists())

    def test_seat_left_after_competitor(self):
        self.event.max_participants = 2
        self.event.save(update_fields=["max_participants"])

        reg = self.claim_against_competitor(self.alice)

        self.assertTrue(reg.is_active)
        self.assertEqual(capacity.registered_count(self.event), 2)

    def test_duplicate_refused_by_index(self):
        # Row of a same-user claim that has not reached its counter update yet
        Registration.objects.create(event=self.event, user=self.alice, status=Registration.STATUS_PENDING)

        with self.assertRaises(DuplicateRegistrationError):
            capacity.try_claim(self.event, self.alice, status=Registration.STATUS_CONFIRMED)

        self.assertEqual(Registration.objects.filter(event=self.event, user=self.alice).count(), 1)
        self.assertEqual(capacity.registered_count(self.event), 0)

    def test_more_claims_than_seats(self):
        self.event.max_participants = 3
        self.event.save(update_fields=["max_participants"])
        outcomes = []

        for i in range(5):
            try:
                capacity.try_claim(self.event, make_user(f"user{i}"), status=Registration.STATUS_CONFIRMED)
                outcomes.append("ok")
            except CapacityExceededError:
                outcomes.append("full")

        self.assertEqual(outcomes, ["ok", "ok", "ok", "full", "full"])
        self.assertEqual(Registration.objects.filter(event=self.event).count(), 3)
        self.assertEqual(capacity.registered_count(self.event), 3)
