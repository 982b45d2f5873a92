# payments/gateways.py
"""
Thin adapters over Stripe and Razorpay.

Each adapter turns gateway specifics into four calls the payment service
understands: create an order, check a client-side proof, look up the
current state of a payment, and issue a refund. Webhook payloads are
verified and reduced to a ``GatewayNotice``.

Network timeouts surface as GatewayTimeoutError and leave our own state
untouched; every other gateway failure is a GatewayError.
"""
import hashlib
import hmac
import json
import logging
from collections import namedtuple
from decimal import ROUND_HALF_UP, Decimal

import requests
import stripe
from django.conf import settings

from .exceptions import (
    GatewayError,
    GatewayTimeoutError,
    SignatureMismatchError,
    UnsupportedGatewayError,
)
from .models import Payment

logger = logging.getLogger('cos.payments')

# kind is one of "completed", "failed" or None for events we ignore
GatewayNotice = namedtuple(
    "GatewayNotice",
    ["kind", "event_type", "order_id", "transaction_id", "data"],
)

# status is one of Payment.STATUS_*
GatewayPaymentState = namedtuple(
    "GatewayPaymentState",
    ["status", "transaction_id", "data"],
)


def to_minor_units(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Decimal:
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def configure_stripe():
    """Bound every Stripe request by PAYMENT_GATEWAY_TIMEOUT."""
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.PAYMENT_GATEWAY_TIMEOUT)


class StripeGateway:
    name = Payment.GATEWAY_STRIPE

    def __init__(self):
        self.api_key = settings.STRIPE_SECRET_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET

    def _call(self, func, *args, **kwargs):
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except stripe.APIConnectionError as exc:
            logger.error(f"Stripe unreachable: {exc}")
            raise GatewayTimeoutError() from exc
        except stripe.StripeError as exc:
            logger.error(f"Stripe request failed: {exc}")
            raise GatewayError(f"Stripe error: {getattr(exc, 'user_message', None) or exc}") from exc

    def create_order(self, payment) -> dict:
        intent = self._call(
            stripe.PaymentIntent.create,
            amount=to_minor_units(payment.amount),
            currency=payment.currency.lower(),
            metadata={
                "payment_id": str(payment.pk),
                "registration_id": str(payment.registration_id),
                "event_id": str(payment.event_id),
            },
            idempotency_key=f"payment-{payment.pk}",
        )
        return {
            "order_id": intent["id"],
            "client_secret": intent["client_secret"],
            "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
        }

    def verify_proof(self, payment, proof) -> GatewayPaymentState:
        intent_id = proof.get("payment_intent_id")
        if not intent_id or intent_id != payment.order_id:
            raise SignatureMismatchError("Payment intent does not belong to this payment.")
        return self.fetch_state(payment)

    def fetch_state(self, payment) -> GatewayPaymentState:
        intent = self._call(stripe.PaymentIntent.retrieve, payment.order_id)
        intent_status = intent["status"]
        if intent_status == "succeeded":
            status = Payment.STATUS_COMPLETED
        elif intent_status == "canceled":
            status = Payment.STATUS_FAILED
        else:
            status = Payment.STATUS_PENDING
        return GatewayPaymentState(
            status=status,
            transaction_id=intent["id"],
            data={"id": intent["id"], "status": intent_status},
        )

    def refund(self, refund) -> dict:
        result = self._call(
            stripe.Refund.create,
            payment_intent=refund.payment.order_id,
            amount=to_minor_units(refund.amount),
            idempotency_key=refund.idempotency_key,
        )
        return {"id": result["id"], "status": result["status"]}

    def parse_webhook(self, payload, signature) -> GatewayNotice:
        if not signature:
            raise SignatureMismatchError("Missing Stripe signature.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning(f"Stripe webhook rejected: {exc}")
            raise SignatureMismatchError() from exc

        obj = event["data"]["object"].to_dict()
        kinds = {
            "payment_intent.succeeded": "completed",
            "payment_intent.payment_failed": "failed",
        }
        kind = kinds.get(event["type"])
        intent_id = obj.get("id") if kind else None
        return GatewayNotice(
            kind=kind,
            event_type=event["type"],
            order_id=intent_id,
            transaction_id=intent_id,
            data={"event_id": event["id"], "object_id": obj.get("id"), "status": obj.get("status")},
        )


class RazorpayGateway:
    name = Payment.GATEWAY_RAZORPAY

    def __init__(self):
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET
        self.base_url = settings.RAZORPAY_API_BASE.rstrip("/")
        self.timeout = settings.PAYMENT_GATEWAY_TIMEOUT

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method,
                url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            logger.error(f"Razorpay timed out: {method} {path}")
            raise GatewayTimeoutError() from exc
        except requests.RequestException as exc:
            logger.error(f"Razorpay request failed: {method} {path}: {exc}")
            raise GatewayError() from exc

        if resp.status_code >= 400:
            logger.error(f"Razorpay returned {resp.status_code}: {method} {path}: {resp.text[:500]}")
            raise GatewayError(f"Razorpay error ({resp.status_code}).")
        return resp.json()

    @staticmethod
    def _sign(secret, message) -> str:
        return hmac.new(
            secret.encode("utf-8"),
            message,
            hashlib.sha256,
        ).hexdigest()

    def create_order(self, payment) -> dict:
        order = self._request(
            "POST",
            "/orders",
            json={
                "amount": to_minor_units(payment.amount),
                "currency": payment.currency.upper(),
                "receipt": f"payment-{payment.pk}",
                "notes": {
                    "registration_id": str(payment.registration_id),
                    "event_id": str(payment.event_id),
                },
            },
        )
        return {
            "order_id": order["id"],
            "key_id": self.key_id,
        }

    def verify_proof(self, payment, proof) -> GatewayPaymentState:
        order_id = proof.get("razorpay_order_id") or ""
        payment_id = proof.get("razorpay_payment_id") or ""
        signature = proof.get("razorpay_signature") or ""

        if not payment_id or order_id != payment.order_id:
            raise SignatureMismatchError("Order does not belong to this payment.")

        expected = self._sign(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        if not hmac.compare_digest(expected, signature):
            logger.warning(f"Razorpay signature mismatch: payment={payment.pk}")
            raise SignatureMismatchError()

        return GatewayPaymentState(
            status=Payment.STATUS_COMPLETED,
            transaction_id=payment_id,
            data={"razorpay_order_id": order_id, "razorpay_payment_id": payment_id},
        )

    def fetch_state(self, payment) -> GatewayPaymentState:
        result = self._request("GET", f"/orders/{payment.order_id}/payments")
        items = result.get("items", [])

        for item in items:
            if item.get("status") == "captured":
                return GatewayPaymentState(
                    status=Payment.STATUS_COMPLETED,
                    transaction_id=item["id"],
                    data={"id": item["id"], "status": item["status"]},
                )

        if items and all(item.get("status") == "failed" for item in items):
            return GatewayPaymentState(
                status=Payment.STATUS_FAILED,
                transaction_id=None,
                data={"attempts": len(items)},
            )

        return GatewayPaymentState(status=Payment.STATUS_PENDING, transaction_id=None, data={})

    def refund(self, refund) -> dict:
        transaction_id = refund.payment.transaction_id
        receipt = refund.idempotency_key

        # A retried refund must not be issued twice; look for our receipt first
        existing = self._request("GET", f"/payments/{transaction_id}/refunds")
        for item in existing.get("items", []):
            if item.get("receipt") == receipt:
                return {"id": item["id"], "status": item.get("status")}

        result = self._request(
            "POST",
            f"/payments/{transaction_id}/refund",
            json={
                "amount": to_minor_units(refund.amount),
                "receipt": receipt,
                "speed": "normal",
            },
        )
        return {"id": result["id"], "status": result.get("status")}

    def parse_webhook(self, payload, signature) -> GatewayNotice:
        if not signature:
            raise SignatureMismatchError("Missing Razorpay signature.")
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        expected = self._sign(self.webhook_secret, payload)
        if not hmac.compare_digest(expected, signature):
            logger.warning("Razorpay webhook rejected: signature mismatch")
            raise SignatureMismatchError()

        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise SignatureMismatchError("Malformed webhook payload.") from exc

        event_type = body.get("event", "")
        kinds = {
            "payment.captured": "completed",
            "order.paid": "completed",
            "payment.failed": "failed",
        }
        kind = kinds.get(event_type)
        entity = body.get("payload", {}).get("payment", {}).get("entity", {})
        return GatewayNotice(
            kind=kind,
            event_type=event_type,
            order_id=entity.get("order_id"),
            transaction_id=entity.get("id"),
            data={"event": event_type, "payment_id": entity.get("id"), "status": entity.get("status")},
        )


GATEWAYS = {
    Payment.GATEWAY_STRIPE: StripeGateway,
    Payment.GATEWAY_RAZORPAY: RazorpayGateway,
}


def get_gateway(name):
    try:
        return GATEWAYS[name]()
    except KeyError:
        raise UnsupportedGatewayError(f"Unsupported payment gateway: {name}")
