# payments/tasks.py
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from core.exceptions import DomainError
from .models import Payment, Refund
from .services import approve_refund, reconcile_payment

logger = logging.getLogger('cos.payments')


@shared_task
def reconcile_pending_payments():
    """
    Ask the gateway about payments that have sat pending longer than
    PAYMENT_RECONCILE_AFTER_MINUTES and settle the ones it knows about.
    """
    cutoff = timezone.now() - timedelta(minutes=settings.PAYMENT_RECONCILE_AFTER_MINUTES)
    pending = Payment.objects.filter(
        status=Payment.STATUS_PENDING,
        created_at__lt=cutoff,
    ).exclude(order_id="")

    settled = 0
    for payment in pending.iterator():
        try:
            result = reconcile_payment(payment)
        except DomainError as exc:
            logger.warning(f"Reconciliation failed for payment {payment.pk}: {exc.detail}")
            continue
        if result.status != Payment.STATUS_PENDING:
            settled += 1

    if settled:
        logger.info(f"Reconciled {settled} pending payments")
    return settled


@shared_task
def retry_approved_refunds():
    """
    Resend approved refunds that failed or timed out at the gateway. The
    refund keeps its idempotency key, so the gateway never pays out twice.
    """
    stuck = Refund.objects.filter(
        approved_at__isnull=False,
        status__in=Refund.PROCESSABLE_STATUSES,
    ).select_related('approved_by')

    completed = 0
    for refund in stuck.iterator():
        try:
            approve_refund(refund, refund.approved_by)
        except DomainError as exc:
            logger.warning(f"Refund retry failed for refund {refund.pk}: {exc.detail}")
            continue
        completed += 1

    if completed:
        logger.info(f"Retried {completed} approved refunds")
    return completed
