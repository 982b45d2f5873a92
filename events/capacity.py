# events/capacity.py
"""
Capacity and uniqueness guard for event registrations.

Two invariants hold for every event, under any interleaving of requests:

* at most one active (pending / confirmed / waitlisted) registration per user,
  enforced by the ``unique_active_registration`` partial unique index;
* active registrations never exceed ``Event.max_participants``, enforced by
  the locked ``CapacityCounter`` row and a conditional ``F()`` increment.

A claim inserts the registration and bumps the counter in one transaction,
so a failed claim leaves neither behind. A release gives the slot back at
most once per registration.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import CapacityExceededError, DuplicateRegistrationError
from .models import CapacityCounter, Event, Registration

logger = logging.getLogger('cos.events')


def ensure_counter(event):
    counter, _ = CapacityCounter.objects.get_or_create(event_id=event.pk)
    return counter


def registered_count(event) -> int:
    return (
        CapacityCounter.objects.filter(event_id=event.pk)
        .values_list('registered_count', flat=True)
        .first()
    ) or 0


def format_registration_number(registration) -> str:
    year = (registration.created_at or timezone.now()).year
    return f"REG-{year}-{registration.pk:06d}"


def try_claim(event, user, **fields) -> Registration:
    """
    Create an active registration for ``user`` and take one capacity slot.

    Raises DuplicateRegistrationError when the user already holds an active
    registration and CapacityExceededError when the event is full. In both
    cases nothing is written.
    """
    ensure_counter(event)

    with transaction.atomic():
        # All claimers for this event queue on the counter row
        counter = CapacityCounter.objects.select_for_update().get(event_id=event.pk)
        max_participants = (
            Event.objects.filter(pk=event.pk)
            .values_list('max_participants', flat=True)
            .get()
        )

        try:
            with transaction.atomic():
                registration = Registration.objects.create(event=event, user=user, **fields)
        except IntegrityError as exc:
            logger.warning(
                f"Duplicate registration refused: event={event.pk}, user={user.pk}"
            )
            raise DuplicateRegistrationError() from exc

        counters = CapacityCounter.objects.filter(pk=counter.pk)
        if max_participants is not None:
            counters = counters.filter(registered_count__lt=max_participants)

        claimed = counters.update(
            registered_count=F('registered_count') + 1,
            updated_at=timezone.now(),
        )
        if not claimed:
            logger.warning(
                f"Registration refused, event full: event={event.pk}, user={user.pk}, "
                f"capacity={max_participants}"
            )
            # Leaving the atomic block with an exception rolls back the insert
            raise CapacityExceededError()

        registration.registration_number = format_registration_number(registration)
        registration.save(update_fields=['registration_number'])

    logger.info(
        f"Capacity claimed: event={event.pk}, user={user.pk}, "
        f"registration={registration.registration_number}"
    )
    return registration


def release(registration) -> bool:
    """
    Return the registration's slot to the event.

    Only the first call for a given registration decrements the counter;
    later calls return False and write nothing.
    """
    with transaction.atomic():
        flipped = Registration.objects.filter(
            pk=registration.pk,
            capacity_released=False,
        ).update(capacity_released=True, updated_at=timezone.now())

        if not flipped:
            logger.info(f"Capacity already released: registration={registration.pk}")
            registration.capacity_released = True
            return False

        CapacityCounter.objects.filter(
            event_id=registration.event_id,
            registered_count__gt=0,
        ).update(
            registered_count=F('registered_count') - 1,
            updated_at=timezone.now(),
        )

    registration.capacity_released = True
    logger.info(
        f"Capacity released: event={registration.event_id}, registration={registration.pk}"
    )
    return True


def resync_counter(event) -> tuple:
    """
    Recompute the counter from the active registrations actually stored.

    Returns (old_count, new_count). Used by the ``sync_capacity_counters``
    management command after manual data fixes.
    """
    ensure_counter(event)
    with transaction.atomic():
        counter = CapacityCounter.objects.select_for_update().get(event_id=event.pk)
        actual = Registration.objects.filter(
            event_id=event.pk,
            status__in=Registration.ACTIVE_STATUSES,
        ).count()
        old = counter.registered_count
        if old != actual:
            counter.registered_count = actual
            counter.save(update_fields=['registered_count', 'updated_at'])
            logger.warning(
                f"Capacity counter resynced: event={event.pk}, {old} -> {actual}"
            )
    return old, actual
