from datetime import timedelta
from decimal import Decimal
from unittest import mock

import requests
import stripe
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from events import capacity
from events.exceptions import CancellationClosedError, NotAllowedError
from events.models import Registration
from events.services import registrations
from events.tests.utils import make_event, make_user
from payments import services
from payments.exceptions import (
    AlreadyProcessedError,
    GatewayError,
    GatewayTimeoutError,
    RefundNotAllowedError,
)
from payments.models import Invoice, Payment, Refund
from payments.tasks import retry_approved_refunds

from .utils import gateway_response, make_payment

REQUESTS_PATH = "payments.gateways.requests.request"


class RefundMixin:
    start_in = timedelta(days=30)

    def setUp(self):
        now = timezone.now()
        self.organizer = make_user("org", role="organizer")
        self.alice = make_user("alice")
        self.event = make_event(
            self.organizer,
            is_paid=True,
            amount=Decimal("500.00"),
            registration_deadline=now + self.start_in / 2,
            start_time=now + self.start_in,
            end_time=now + self.start_in + timedelta(hours=4),
        )
        self.reg = registrations.register(self.event, self.alice)
        self.payment = self.pay(self.reg)

    def pay(self, registration, gateway=Payment.GATEWAY_RAZORPAY, order_id="order_123", transaction_id="pay_1"):
        payment = make_payment(registration, gateway=gateway, order_id=order_id)
        return services.complete_payment(payment, transaction_id)

    def reload(self):
        self.reg.refresh_from_db()
        self.payment.refresh_from_db()


class RefundPolicyTestCase(RefundMixin, TestCase):
    def test_policy_windows(self):
        start = self.event.start_time
        self.assertEqual(services.refund_percentage_for(self.reg, now=start - timedelta(days=10)), 100)
        self.assertEqual(services.refund_percentage_for(self.reg, now=start - timedelta(days=5)), 50)
        self.assertEqual(services.refund_percentage_for(self.reg, now=start - timedelta(days=1)), 0)

    def test_rejected_registrations_refunded_in_full(self):
        self.reg.status = Registration.STATUS_REJECTED
        self.assertEqual(services.refund_percentage_for(self.reg, now=self.event.start_time), 100)

    def test_compute_refund_amount(self):
        self.assertEqual(services.compute_refund_amount(Decimal("99.99"), 50), Decimal("50.00"))


class RequestRefundTestCase(RefundMixin, TestCase):
    def test_request_cancels_and_opens_refund(self):
        refund = services.request_refund(self.payment, self.alice, reason="Can't attend")

        self.reload()
        self.assertEqual(self.reg.status, Registration.STATUS_CANCELLED)
        self.assertEqual(self.reg.payment_status, Registration.PAYMENT_REFUND_PENDING)
        self.assertEqual(refund.status, Refund.STATUS_PENDING)
        self.assertEqual(refund.refund_percentage, 100)
        self.assertEqual(refund.original_amount, Decimal("500.00"))
        self.assertEqual(refund.amount, Decimal("500.00"))

    def test_one_open_refund_per_payment(self):
        services.request_refund(self.payment, self.alice)
        with self.assertRaises(RefundNotAllowedError):
            services.request_refund(self.payment, self.alice)

    def test_only_owner_requests(self):
        with self.assertRaises(NotAllowedError):
            services.request_refund(self.payment, self.organizer)

    def test_pending_payment_not_refundable(self):
        other = make_user("bob")
        reg = registrations.register(self.event, other)
        pending = make_payment(reg, order_id="order_bob")

        with self.assertRaises(RefundNotAllowedError):
            services.request_refund(pending, other)

    def test_request_refund_api(self):
        client = APIClient()
        client.force_authenticate(user=self.alice)

        resp = client.post(f"/api/payments/{self.payment.id}/refund/", {"reason": "Busy"}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.json()["refund_percentage"], 100)
        self.assertEqual(resp.json()["reason"], "Busy")


class PartialRefundTestCase(RefundMixin, TestCase):
    start_in = timedelta(days=5)

    def test_partial_refund_snapshot(self):
        refund = services.request_refund(self.payment, self.alice)
        self.assertEqual(refund.refund_percentage, 50)
        self.assertEqual(refund.amount, Decimal("250.00"))

        # Later policy edits do not touch an open refund
        self.event.partial_refund_percentage = 10
        self.event.save()

        with mock.patch(REQUESTS_PATH) as req:
            req.side_effect = [
                gateway_response(body={"items": []}),
                gateway_response(body={"id": "rfnd_1", "status": "processed"}),
            ]
            services.process_refund(refund, services.REFUND_APPROVE, self.organizer)

        _, kwargs = req.call_args
        self.assertEqual(kwargs["json"]["amount"], 25000)
        refund.refresh_from_db()
        self.assertEqual(refund.amount, Decimal("250.00"))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.refund_amount, Decimal("250.00"))


class LateCancellationTestCase(RefundMixin, TestCase):
    start_in = timedelta(days=1)

    def test_too_close_for_refund(self):
        with self.assertRaises(RefundNotAllowedError):
            services.request_refund(self.payment, self.alice)

        self.reload()
        self.assertEqual(self.reg.status, Registration.STATUS_CONFIRMED)

    def test_paid_cancel_refused_without_refund(self):
        with self.assertRaises(CancellationClosedError):
            registrations.cancel(self.reg, self.alice)

        self.reload()
        self.assertEqual(self.reg.status, Registration.STATUS_CONFIRMED)
        self.assertEqual(self.reg.payment_status, Registration.PAYMENT_PAID)
        self.assertFalse(self.reg.capacity_released)
        self.assertEqual(capacity.registered_count(self.event), 1)
        self.assertFalse(Refund.objects.filter(payment=self.payment).exists())

    def test_organizer_cancel_refused_but_reject_refunds_in_full(self):
        with self.assertRaises(CancellationClosedError):
            registrations.update_status(self.reg, Registration.STATUS_CANCELLED, self.organizer)

        bob = make_user("bob")
        reg = registrations.register(self.event, bob)
        payment = self.pay(reg, order_id="order_456", transaction_id="pay_2")
        # confirmed -> rejected is not a valid transition; reject while still pending
        Registration.objects.filter(pk=reg.pk).update(status=Registration.STATUS_PENDING)

        registrations.update_status(reg, Registration.STATUS_REJECTED, self.organizer)

        reg.refresh_from_db()
        refund = Refund.objects.get(payment=payment)
        self.assertEqual(reg.payment_status, Registration.PAYMENT_REFUND_PENDING)
        self.assertEqual(refund.refund_percentage, 100)

    def test_cancel_api_reports_closed_window(self):
        client = APIClient()
        client.force_authenticate(user=self.alice)

        resp = client.put(f"/api/registrations/{self.reg.id}/cancel/", {}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.json()["code"], "cancellation_closed")
        self.reload()
        self.assertEqual(self.reg.status, Registration.STATUS_CONFIRMED)


class ProcessRefundTestCase(RefundMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.refund = services.request_refund(self.payment, self.alice, reason="Plans changed")

    def test_reject_keeps_payment(self):
        refund = services.process_refund(self.refund, services.REFUND_REJECT, self.organizer, notes="Policy")

        self.reload()
        self.assertEqual(refund.status, Refund.STATUS_REJECTED)
        self.assertEqual(refund.rejection_reason, "Policy")
        self.assertEqual(self.reg.payment_status, Registration.PAYMENT_PAID)

        with self.assertRaises(AlreadyProcessedError):
            services.process_refund(self.refund, services.REFUND_REJECT, self.organizer)

        # A rejected refund may be asked for again
        again = services.request_refund(self.payment, self.alice)
        self.assertNotEqual(again.pk, refund.pk)
        self.assertEqual(again.status, Refund.STATUS_PENDING)

    def test_participant_cannot_process(self):
        with self.assertRaises(NotAllowedError):
            services.process_refund(self.refund, services.REFUND_APPROVE, self.alice)

    def test_approve_completes_refund(self):
        with mock.patch(REQUESTS_PATH) as req:
            req.side_effect = [
                gateway_response(body={"items": []}),
                gateway_response(body={"id": "rfnd_1", "status": "processed"}),
            ]
            refund = services.process_refund(self.refund, services.REFUND_APPROVE, self.organizer)

        self.reload()
        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(refund.refund_transaction_id, "rfnd_1")
        self.assertEqual(refund.approved_by, self.organizer)
        self.assertEqual(self.reg.payment_status, Registration.PAYMENT_REFUNDED)
        self.assertEqual(self.payment.refund_amount, Decimal("500.00"))
        self.assertEqual(Invoice.objects.get(payment=self.payment).status, Invoice.STATUS_REFUNDED)

        method, url = req.call_args[0]
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/payments/pay_1/refund"))
        self.assertEqual(req.call_args[1]["json"]["receipt"], f"refund-{refund.pk}")

        with self.assertRaises(AlreadyProcessedError):
            services.process_refund(refund, services.REFUND_APPROVE, self.organizer)

    def test_gateway_failure_then_retry_sweep(self):
        with mock.patch(REQUESTS_PATH, return_value=gateway_response(500, {"error": "down"})):
            with self.assertRaises(GatewayError):
                services.process_refund(self.refund, services.REFUND_APPROVE, self.organizer)

        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, Refund.STATUS_FAILED)
        self.assertIsNotNone(self.refund.approved_at)
        self.reload()
        self.assertEqual(self.reg.payment_status, Registration.PAYMENT_REFUND_PENDING)

        with mock.patch(REQUESTS_PATH) as req:
            req.side_effect = [
                gateway_response(body={"items": []}),
                gateway_response(body={"id": "rfnd_2", "status": "processed"}),
            ]
            self.assertEqual(retry_approved_refunds(), 1)

        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(req.call_args[1]["json"]["receipt"], f"refund-{self.refund.pk}")

    def test_retry_finds_refund_already_issued(self):
        receipt = f"refund-{self.refund.pk}"
        with mock.patch(REQUESTS_PATH, side_effect=requests.Timeout()):
            with self.assertRaises(GatewayTimeoutError):
                services.approve_refund(self.refund, self.organizer)

        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, Refund.STATUS_PENDING)

        # The gateway did issue it before timing out; the retry must not pay twice
        existing = {"items": [{"id": "rfnd_9", "receipt": receipt, "status": "processed"}]}
        with mock.patch(REQUESTS_PATH, return_value=gateway_response(body=existing)) as req:
            refund = services.approve_refund(self.refund, self.organizer)

        self.assertEqual(req.call_count, 1)
        self.assertEqual(req.call_args[0][0], "GET")
        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(refund.refund_transaction_id, "rfnd_9")

    def test_untouched_refunds_not_retried(self):
        with mock.patch(REQUESTS_PATH) as req:
            self.assertEqual(retry_approved_refunds(), 0)
        req.assert_not_called()

    def test_process_refund_api(self):
        client = APIClient()
        client.force_authenticate(user=self.organizer)

        resp = client.put(
            f"/api/payments/refunds/{self.refund.id}/process/",
            {"action": "reject", "notes": "No"},
            format="json",
        )

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()["status"], Refund.STATUS_REJECTED)

        resp = client.put(
            f"/api/payments/refunds/{self.refund.id}/process/",
            {"action": "refund"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)


class StripeRefundTestCase(RefundMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.bob = make_user("bob")
        reg = registrations.register(self.event, self.bob)
        self.stripe_payment = self.pay(
            reg, gateway=Payment.GATEWAY_STRIPE, order_id="pi_1", transaction_id="pi_1",
        )
        self.refund = services.request_refund(self.stripe_payment, self.bob)

    def test_retry_reuses_idempotency_key(self):
        result = {"id": "re_1", "status": "succeeded"}
        with mock.patch("payments.gateways.stripe.Refund.create") as create:
            create.side_effect = [stripe.APIConnectionError("network down"), result]

            with self.assertRaises(GatewayTimeoutError):
                services.approve_refund(self.refund, self.organizer)
            refund = services.approve_refund(self.refund, self.organizer)

        keys = [c[1]["idempotency_key"] for c in create.call_args_list]
        self.assertEqual(keys, [f"refund-{self.refund.pk}"] * 2)
        self.assertEqual(create.call_args[1]["payment_intent"], "pi_1")
        self.assertEqual(refund.status, Refund.STATUS_COMPLETED)
        self.assertEqual(refund.refund_transaction_id, "re_1")

    def test_timeout_leaves_refund_pending(self):
        client = APIClient()
        client.force_authenticate(user=self.organizer)

        with mock.patch(
            "payments.gateways.stripe.Refund.create",
            side_effect=stripe.APIConnectionError("Request timed out"),
        ):
            resp = client.put(
                f"/api/payments/refunds/{self.refund.id}/process/",
                {"action": "approve"},
                format="json",
            )

        self.assertEqual(resp.status_code, status.HTTP_504_GATEWAY_TIMEOUT)
        self.refund.refresh_from_db()
        self.assertEqual(self.refund.status, Refund.STATUS_PENDING)
        self.assertIsNotNone(self.refund.approved_at)
        self.stripe_payment.refresh_from_db()
        self.assertIsNone(self.stripe_payment.refunded_at)
        self.assertEqual(self.stripe_payment.registration.payment_status, Registration.PAYMENT_REFUND_PENDING)
