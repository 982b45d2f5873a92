# payments/services.py
"""
Payment reconciliation service.

Client-side verification, gateway webhooks and the reconciliation sweep
all settle a payment through ``complete_payment`` / ``fail_payment``.
Both lock the registration and then the payment, so whichever producer
arrives second sees the settled state and does nothing.

Lock order everywhere in this module: Registration, Payment, Refund.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from core.constants import (
    ACTIVITY_PAYMENT_COMPLETED,
    ACTIVITY_PAYMENT_FAILED,
    ACTIVITY_PAYMENT_INITIATED,
    ACTIVITY_REFUND_COMPLETED,
    ACTIVITY_REFUND_FAILED,
    ACTIVITY_REFUND_REJECTED,
    ACTIVITY_REFUND_REQUESTED,
)
from core.services import ActivityService
from events.exceptions import AlreadyTerminalError, NotAllowedError
from events.models import Registration
from events.permissions import user_can_manage_event
from notifications.models import Notification
from notifications.services import notify_on_commit

from .exceptions import (
    AlreadyPaidError,
    AlreadyProcessedError,
    GatewayError,
    GatewayTimeoutError,
    PaymentNotRequiredError,
    PaymentStateError,
    RefundNotAllowedError,
)
from .gateways import get_gateway
from .models import Invoice, Payment, Refund

logger = logging.getLogger('cos.payments')

REFUND_APPROVE = "approve"
REFUND_REJECT = "reject"


def _lock_registration(registration_id):
    return (
        Registration.objects.select_for_update()
        .select_related('event', 'user')
        .get(pk=registration_id)
    )


def _lock_payment(payment_id):
    return Payment.objects.select_for_update().get(pk=payment_id)


# ---- Initiation ----------------------------------------------------------


def initiate(registration, gateway_name, user):
    """
    Start (or resume) payment for a registration.

    Returns (payment, client_payload). A pending payment is reused, so a
    client retrying after a dropped response gets the same gateway order.
    """
    if registration.user_id != user.pk:
        raise NotAllowedError("You can only pay for your own registration.")

    event = registration.event
    if not event.is_paid:
        raise PaymentNotRequiredError()

    gateway = get_gateway(gateway_name)

    with transaction.atomic():
        registration = _lock_registration(registration.pk)

        if registration.is_terminal:
            raise AlreadyTerminalError("Registration is no longer active.")

        if registration.payment_status != Registration.PAYMENT_PENDING:
            raise AlreadyPaidError()

        payment = (
            Payment.objects.select_for_update()
            .filter(
                registration=registration,
                status__in=[Payment.STATUS_PENDING, Payment.STATUS_COMPLETED],
            )
            .first()
        )
        if payment is not None and payment.is_completed:
            raise AlreadyPaidError()

        if payment is None:
            payment = Payment.objects.create(
                registration=registration,
                user=user,
                event=event,
                amount=event.amount,
                currency=event.currency,
                gateway=gateway.name,
            )
            ActivityService.log_activity(
                actor=user,
                verb=ACTIVITY_PAYMENT_INITIATED,
                target=payment,
                metadata={'registration_id': registration.pk, 'gateway': gateway.name},
            )
            logger.info(
                f"Payment initiated: payment={payment.pk}, registration={registration.pk}, "
                f"gateway={gateway.name}, amount={payment.amount}"
            )

    if payment.order_id:
        return payment, payment.gateway_response.get('client', {})

    # Order creation happens outside the lock; a timeout leaves the payment
    # pending with no order so the next initiate retries it.
    gateway = get_gateway(payment.gateway)
    try:
        client = gateway.create_order(payment)
    except GatewayTimeoutError:
        raise
    except GatewayError as exc:
        fail_payment(payment, {'error': str(exc.detail)}, reason="Gateway order creation failed")
        raise

    Payment.objects.filter(pk=payment.pk, order_id="").update(
        order_id=client['order_id'],
        gateway_response={'client': client},
        updated_at=timezone.now(),
    )
    payment.refresh_from_db()
    return payment, payment.gateway_response.get('client', client)


# ---- Settlement ------------------------------------------------------------


def verify(payment, proof, user):
    """
    Check a client-side payment proof and settle the payment.

    A proof that does not match raises SignatureMismatchError and changes
    nothing. Verifying an already completed payment returns it unchanged.
    """
    if payment.user_id != user.pk:
        raise NotAllowedError("You can only verify your own payment.")

    if payment.is_completed:
        return payment

    if payment.status == Payment.STATUS_FAILED:
        raise PaymentStateError("This payment attempt failed. Start a new payment.")

    gateway = get_gateway(payment.gateway)
    state = gateway.verify_proof(payment, proof or {})

    if state.status == Payment.STATUS_COMPLETED:
        return complete_payment(payment, state.transaction_id, state.data)
    if state.status == Payment.STATUS_FAILED:
        return fail_payment(payment, state.data, reason="Gateway reported failure")
    return payment


def complete_payment(payment, transaction_id, gateway_response=None):
    """
    Mark payment completed exactly once.

    The registration becomes paid (and confirmed if it was pending). If it
    was cancelled or rejected while the payment was in flight, the money is
    routed straight into a full refund instead.
    """
    with transaction.atomic():
        registration = _lock_registration(payment.registration_id)
        payment = _lock_payment(payment.pk)

        if payment.is_completed:
            logger.warning(
                f"Duplicate payment completion ignored: payment={payment.pk}, "
                f"transaction={transaction_id}"
            )
            return payment

        if transaction_id and Payment.objects.filter(
            transaction_id=transaction_id,
        ).exclude(pk=payment.pk).exists():
            logger.warning(
                f"Transaction already recorded on another payment: transaction={transaction_id}, "
                f"payment={payment.pk}"
            )
            return payment

        if payment.status == Payment.STATUS_FAILED:
            # The gateway took the money after we gave up on this attempt
            live = (
                Payment.objects.select_for_update()
                .filter(
                    registration=registration,
                    status__in=[Payment.STATUS_PENDING, Payment.STATUS_COMPLETED],
                )
                .exclude(pk=payment.pk)
                .first()
            )
            if live is not None and live.is_completed:
                logger.error(
                    f"Second successful payment for registration={registration.pk}: "
                    f"payment={payment.pk}, transaction={transaction_id}. Manual refund required."
                )
                payment.gateway_response = {
                    **payment.gateway_response,
                    'late_success': gateway_response or {},
                    'transaction_id': transaction_id,
                }
                payment.save(update_fields=['gateway_response', 'updated_at'])
                return payment
            if live is not None:
                live.status = Payment.STATUS_FAILED
                live.failure_reason = "Superseded by a completed attempt"
                live.save(update_fields=['status', 'failure_reason', 'updated_at'])

        now = timezone.now()
        payment.status = Payment.STATUS_COMPLETED
        payment.transaction_id = transaction_id or None
        payment.paid_at = now
        payment.failure_reason = ""
        payment.gateway_response = {**payment.gateway_response, 'settlement': gateway_response or {}}
        payment.save(update_fields=[
            'status', 'transaction_id', 'paid_at', 'failure_reason',
            'gateway_response', 'updated_at',
        ])
        issue_invoice(payment, registration)

        ActivityService.log_activity(
            actor=payment.user,
            verb=ACTIVITY_PAYMENT_COMPLETED,
            target=payment,
            metadata={'registration_id': registration.pk, 'transaction_id': transaction_id},
        )

        registration.payment_status = Registration.PAYMENT_PAID
        if registration.is_terminal:
            registration.save(update_fields=['payment_status', 'updated_at'])
            logger.warning(
                f"Payment completed for {registration.status} registration={registration.pk}; "
                f"routing to refund"
            )
            create_refund_for_registration(
                registration,
                reason=f"Payment received after registration was {registration.status}",
                percentage=100,
            )
        else:
            if registration.status == Registration.STATUS_PENDING:
                registration.status = Registration.STATUS_CONFIRMED
            registration.save(update_fields=['status', 'payment_status', 'updated_at'])
            notify_on_commit(
                registration.user,
                Notification.TYPE_PAYMENT,
                f"Payment received for {registration.event.title}",
                body=f"Registration {registration.registration_number} is confirmed.",
                event=registration.event,
            )

    logger.info(f"Payment completed: payment={payment.pk}, transaction={transaction_id}")
    return payment


def fail_payment(payment, gateway_response=None, reason=""):
    """
    Mark a pending payment failed. The registration keeps its pending
    payment status so the user can start a new attempt.
    """
    with transaction.atomic():
        _lock_registration(payment.registration_id)
        payment = _lock_payment(payment.pk)

        if payment.status != Payment.STATUS_PENDING:
            return payment

        payment.status = Payment.STATUS_FAILED
        payment.failure_reason = reason or "Payment failed"
        payment.gateway_response = {**payment.gateway_response, 'failure': gateway_response or {}}
        payment.save(update_fields=['status', 'failure_reason', 'gateway_response', 'updated_at'])

        ActivityService.log_activity(
            actor=payment.user,
            verb=ACTIVITY_PAYMENT_FAILED,
            target=payment,
            metadata={'reason': payment.failure_reason},
        )

    logger.warning(f"Payment failed: payment={payment.pk}, reason={payment.failure_reason}")
    return payment


def handle_webhook(gateway_name, payload, signature):
    """
    Verify and apply a gateway webhook. Returns the affected payment, or
    None for events we do not act on.
    """
    gateway = get_gateway(gateway_name)
    notice = gateway.parse_webhook(payload, signature)

    if notice.kind is None:
        logger.info(f"Webhook ignored: gateway={gateway_name}, type={notice.event_type}")
        return None

    payment = None
    if notice.order_id:
        payment = (
            Payment.objects.filter(gateway=gateway_name, order_id=notice.order_id)
            .order_by('-created_at')
            .first()
        )
    if payment is None and notice.transaction_id:
        payment = Payment.objects.filter(transaction_id=notice.transaction_id).first()

    if payment is None:
        logger.warning(
            f"Webhook for unknown payment: gateway={gateway_name}, order={notice.order_id}, "
            f"transaction={notice.transaction_id}"
        )
        return None

    if notice.kind == "completed":
        return complete_payment(payment, notice.transaction_id, notice.data)
    return fail_payment(payment, notice.data, reason=f"Gateway event {notice.event_type}")


def reconcile_payment(payment):
    """
    Ask the gateway where a pending payment stands and settle it if the
    gateway knows. Payments without an order are left alone.
    """
    if payment.status != Payment.STATUS_PENDING or not payment.order_id:
        return payment

    state = get_gateway(payment.gateway).fetch_state(payment)
    if state.status == Payment.STATUS_COMPLETED:
        return complete_payment(payment, state.transaction_id, state.data)
    if state.status == Payment.STATUS_FAILED:
        return fail_payment(payment, state.data, reason="Reconciled as failed")
    return payment


def issue_invoice(payment, registration):
    year = (payment.paid_at or timezone.now()).year
    invoice, _ = Invoice.objects.get_or_create(
        payment=payment,
        defaults={
            'invoice_number': f"INV-{year}-{payment.pk:06d}",
            'registration': registration,
            'user': payment.user,
            'event': payment.event,
            'amount': payment.amount,
            'currency': payment.currency,
            'line_items': [{
                'description': f"Registration for {registration.event.title}",
                'quantity': 1,
                'unit_price': str(payment.amount),
                'total': str(payment.amount),
            }],
            'paid_at': payment.paid_at or timezone.now(),
        },
    )
    return invoice


# ---- Refunds -----------------------------------------------------------------


def refund_percentage_for(registration, now=None) -> int:
    """
    Event refund policy: full refund up to ``full_refund_days`` before the
    start, partial up to ``partial_refund_days``, nothing after that.
    Organizer rejections are always refunded in full.
    """
    if registration.status == Registration.STATUS_REJECTED:
        return 100

    event = registration.event
    now = now or timezone.now()
    days_until_start = (event.start_time - now).total_seconds() / 86400

    if days_until_start >= event.full_refund_days:
        return 100
    if days_until_start >= event.partial_refund_days:
        return event.partial_refund_percentage
    return 0


def compute_refund_amount(original_amount, percentage) -> Decimal:
    return (Decimal(original_amount) * Decimal(percentage) / Decimal(100)).quantize(Decimal("0.01"))


def create_refund_for_registration(registration, reason="", percentage=None):
    """
    Open a refund for a paid registration. Caller holds the registration
    lock. The policy percentage and amount are fixed here and never
    recomputed. Returns None when there is no completed payment; a 0%
    policy is refused so a paid registration never closes without a refund.
    """
    payment = (
        Payment.objects.select_for_update()
        .filter(registration_id=registration.pk, status=Payment.STATUS_COMPLETED)
        .first()
    )
    if payment is None:
        logger.warning(f"No completed payment to refund: registration={registration.pk}")
        return None

    existing = Refund.objects.filter(payment=payment).exclude(status=Refund.STATUS_REJECTED).first()
    if existing is not None:
        return existing

    if percentage is None:
        percentage = refund_percentage_for(registration)

    if percentage <= 0:
        logger.warning(
            f"Refund window closed: registration={registration.pk}, payment={payment.pk}"
        )
        raise RefundNotAllowedError("Event is too close for refund.")

    refund = Refund.objects.create(
        payment=payment,
        registration_id=registration.pk,
        event_id=registration.event_id,
        user_id=registration.user_id,
        original_amount=payment.amount,
        refund_percentage=percentage,
        amount=compute_refund_amount(payment.amount, percentage),
        reason=reason or "",
    )

    registration.payment_status = Registration.PAYMENT_REFUND_PENDING
    registration.save(update_fields=['payment_status', 'updated_at'])

    ActivityService.log_activity(
        actor=registration.user,
        verb=ACTIVITY_REFUND_REQUESTED,
        target=refund,
        metadata={'payment_id': payment.pk, 'percentage': percentage, 'amount': str(refund.amount)},
    )
    notify_on_commit(
        registration.event.organizer,
        Notification.TYPE_REFUND,
        "Refund Request",
        body=f"Refund of {refund.amount} requested for {registration.event.title}",
        event=registration.event,
    )

    logger.info(
        f"Refund opened: refund={refund.pk}, payment={payment.pk}, "
        f"percentage={percentage}, amount={refund.amount}"
    )
    return refund


def request_refund(payment, user, reason=""):
    """
    Owner-initiated refund. An active registration is cancelled, which opens
    the refund; a terminal one whose earlier refund was rejected gets a new
    refund directly.
    """
    from events.services import registrations

    if payment.user_id != user.pk:
        raise NotAllowedError("Not authorized to request refund for this payment.")

    if not payment.is_completed:
        raise RefundNotAllowedError("Only completed payments can be refunded.")

    if Refund.objects.filter(payment=payment).exclude(status=Refund.STATUS_REJECTED).exists():
        raise RefundNotAllowedError("Refund request already exists.")

    registration = payment.registration
    if refund_percentage_for(registration) <= 0:
        raise RefundNotAllowedError("Event is too close for refund.")

    if registration.is_active:
        registrations.cancel(registration, user, reason=reason)
    else:
        with transaction.atomic():
            registration = _lock_registration(registration.pk)
            create_refund_for_registration(registration, reason=reason)

    refund = Refund.objects.filter(payment=payment).exclude(status=Refund.STATUS_REJECTED).first()
    if refund is None:
        raise RefundNotAllowedError("Event is too close for refund.")
    return refund


def process_refund(refund, action, actor, notes=None):
    """
    Organizer decision on a refund.

    ``reject`` closes a pending refund and the payment is retained.
    ``approve`` sends a pending or failed refund to the gateway under the
    idempotency key ``refund-<id>``; calling it again after a failure
    resumes the same refund.
    """
    if not user_can_manage_event(actor, refund.event):
        raise NotAllowedError("Not authorized to process refunds.")

    if action == REFUND_REJECT:
        return _reject_refund(refund, actor, notes)
    if action == REFUND_APPROVE:
        return approve_refund(refund, actor, notes)
    raise ValueError(f"Unknown refund action: {action}")


def _reject_refund(refund, actor, notes):
    with transaction.atomic():
        registration = _lock_registration(refund.registration_id)
        refund = Refund.objects.select_for_update().get(pk=refund.pk)

        if refund.status != Refund.STATUS_PENDING:
            raise AlreadyProcessedError()

        refund.status = Refund.STATUS_REJECTED
        refund.rejection_reason = notes or ""
        refund.processed_by = actor
        refund.processed_at = timezone.now()
        refund.save(update_fields=['status', 'rejection_reason', 'processed_by', 'processed_at'])

        if registration.payment_status == Registration.PAYMENT_REFUND_PENDING:
            registration.payment_status = Registration.PAYMENT_PAID
            registration.save(update_fields=['payment_status', 'updated_at'])

        ActivityService.log_activity(
            actor=actor,
            verb=ACTIVITY_REFUND_REJECTED,
            target=refund,
            metadata={'reason': notes or ""},
        )
        notify_on_commit(
            registration.user,
            Notification.TYPE_REFUND,
            "Refund Rejected",
            body=notes or "",
            event=registration.event,
        )

    logger.info(f"Refund rejected: refund={refund.pk}, by={getattr(actor, 'id', 'unknown')}")
    return refund


def approve_refund(refund, actor=None, notes=None):
    """
    Send the refund to the gateway while holding its lock, so two approvals
    never reach the gateway at once. Also used by the retry sweep.
    """
    error = None

    with transaction.atomic():
        registration = _lock_registration(refund.registration_id)
        refund = Refund.objects.select_for_update().select_related('payment').get(pk=refund.pk)

        if refund.status not in Refund.PROCESSABLE_STATUSES:
            raise AlreadyProcessedError()

        now = timezone.now()
        if refund.approved_at is None:
            refund.approved_by = actor
            refund.approved_at = now
        if actor is not None:
            refund.processed_by = actor
        if notes:
            refund.notes = notes

        try:
            result = get_gateway(refund.payment.gateway).refund(refund)
        except GatewayTimeoutError as exc:
            refund.save(update_fields=['approved_by', 'approved_at', 'processed_by', 'notes'])
            logger.error(f"Refund timed out, left {refund.status}: refund={refund.pk}")
            error = exc
        except GatewayError as exc:
            refund.status = Refund.STATUS_FAILED
            refund.notes = str(exc.detail)
            refund.save(update_fields=['status', 'approved_by', 'approved_at', 'processed_by', 'notes'])
            ActivityService.log_activity(
                actor=actor,
                verb=ACTIVITY_REFUND_FAILED,
                target=refund,
                metadata={'error': str(exc.detail)},
            )
            logger.error(f"Refund failed at gateway: refund={refund.pk}: {exc.detail}")
            error = exc
        else:
            _complete_refund(refund, registration, result, actor, now)

    if error is not None:
        raise error
    return refund


def _complete_refund(refund, registration, result, actor, now):
    refund.status = Refund.STATUS_COMPLETED
    refund.refund_transaction_id = result.get('id') or ""
    refund.gateway_response = result
    refund.processed_at = now
    refund.save(update_fields=[
        'status', 'refund_transaction_id', 'gateway_response', 'processed_at',
        'approved_by', 'approved_at', 'processed_by', 'notes',
    ])

    payment = _lock_payment(refund.payment_id)
    payment.refund_amount = refund.amount
    payment.refunded_at = now
    payment.save(update_fields=['refund_amount', 'refunded_at', 'updated_at'])

    Invoice.objects.filter(payment=payment).update(status=Invoice.STATUS_REFUNDED)

    registration.payment_status = Registration.PAYMENT_REFUNDED
    registration.save(update_fields=['payment_status', 'updated_at'])

    ActivityService.log_activity(
        actor=actor,
        verb=ACTIVITY_REFUND_COMPLETED,
        target=refund,
        metadata={'amount': str(refund.amount), 'refund_transaction_id': refund.refund_transaction_id},
    )
    notify_on_commit(
        registration.user,
        Notification.TYPE_REFUND,
        "Refund Processed",
        body=f"Your refund of {refund.amount} has been processed",
        event=registration.event,
    )
    logger.info(f"Refund completed: refund={refund.pk}, amount={refund.amount}")
