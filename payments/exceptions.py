# payments/exceptions.py
"""
Payment, refund and gateway errors.

Signature mismatches are a security boundary and are never retried.
Gateway timeouts leave the payment or refund pending so a later sweep
can settle it.
"""
from rest_framework import status

from core.exceptions import DomainError


class PaymentNotRequiredError(DomainError):
    default_detail = "This event does not require payment."
    default_code = "payment_not_required"


class AlreadyPaidError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Payment already completed for this registration."
    default_code = "already_paid"


class PaymentStateError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Payment cannot perform this action in its current state."
    default_code = "payment_state"


class RefundNotAllowedError(DomainError):
    default_detail = "A refund cannot be requested for this payment."
    default_code = "refund_not_allowed"


class AlreadyProcessedError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Refund has already been processed."
    default_code = "already_processed"


class UnsupportedGatewayError(DomainError):
    default_detail = "Unsupported payment gateway."
    default_code = "unsupported_gateway"


class SignatureMismatchError(DomainError):
    default_detail = "Payment signature verification failed."
    default_code = "signature_mismatch"


class GatewayError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment gateway request failed."
    default_code = "gateway_error"


class GatewayTimeoutError(DomainError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_detail = "Payment gateway did not respond in time. The request will be reconciled."
    default_code = "gateway_timeout"
