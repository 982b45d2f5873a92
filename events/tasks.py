# events/tasks.py
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.exceptions import DomainError
from .models import Registration, Round
from .services import registrations, rounds

logger = logging.getLogger('cos.events')


@shared_task
def cancel_unpaid_registrations():
    """
    Cancel pending registrations on paid events whose payment never
    arrived within PAYMENT_TIMEOUT_HOURS, giving their slots back.
    """
    cutoff = timezone.now() - timedelta(hours=settings.PAYMENT_TIMEOUT_HOURS)
    stale = Registration.objects.filter(
        event__is_paid=True,
        status=Registration.STATUS_PENDING,
        payment_status=Registration.PAYMENT_PENDING,
        created_at__lt=cutoff,
    ).exclude(payments__status="completed")

    cancelled = 0
    for reg in stale.iterator():
        try:
            if registrations.expire_unpaid(reg):
                cancelled += 1
        except Exception:
            # One bad row must not stop the sweep
            logger.exception(f"Failed to expire unpaid registration {reg.id}")

    if cancelled:
        logger.info(f"Cancelled {cancelled} unpaid registrations")
    return cancelled


@shared_task
def advance_round_statuses():
    """
    Start rounds whose start time has passed and complete rounds whose end
    time has passed. Rounds that cannot move yet are left for the next run.
    """
    now = timezone.now()
    due = Round.objects.filter(
        Q(status=Round.STATUS_UPCOMING, starts_at__lte=now)
        | Q(status=Round.STATUS_ONGOING, ends_at__lte=now),
        number__isnull=False,
    ).order_by('event_id', 'number')

    moved = 0
    for round_obj in due:
        target = (
            Round.STATUS_ONGOING
            if round_obj.status == Round.STATUS_UPCOMING
            else Round.STATUS_COMPLETED
        )
        try:
            rounds.set_round_status(round_obj, target, now=now)
            moved += 1
        except DomainError as exc:
            logger.info(
                f"Round {round_obj.number} of event {round_obj.event_id} not moved to {target}: {exc.detail}"
            )

    return moved
