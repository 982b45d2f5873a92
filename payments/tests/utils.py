# payments/tests/utils.py
import hashlib
import hmac
from unittest import mock

from django.conf import settings

from payments.models import Payment


def razorpay_signature(secret, message):
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def stripe_signature_header(payload, timestamp, secret=None):
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def gateway_response(status_code=200, body=None):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    return resp


def make_payment(registration, gateway=Payment.GATEWAY_RAZORPAY, order_id="order_123", **fields):
    return Payment.objects.create(
        registration=registration,
        user=registration.user,
        event=registration.event,
        amount=registration.event.amount,
        currency=registration.event.currency,
        gateway=gateway,
        order_id=order_id,
        **fields,
    )
