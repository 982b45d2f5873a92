# payments/views.py
import logging

from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from events.models import Registration

from . import services
from .models import Payment, Refund
from .serializers import (
    InitiatePaymentSerializer,
    PaymentSerializer,
    ProcessRefundSerializer,
    RefundRequestSerializer,
    RefundSerializer,
    VerifyPaymentSerializer,
)

logger = logging.getLogger('cos.payments')


class InitiatePaymentView(APIView):
    """
    POST /api/payments/initiate/
    Body: {"registration_id": 5, "gateway": "razorpay"}
    Returns the payment and what the client needs to open checkout.
    """
    permission_classes = [IsAuthenticated]
    throttle_scope = "payment-initiate"

    def post(self, request):
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        registration = get_object_or_404(
            Registration.objects.select_related("event"),
            pk=data["registration_id"],
        )
        payment, client = services.initiate(registration, data["gateway"], request.user)

        return Response(
            {"payment": PaymentSerializer(payment).data, "client": client},
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(APIView):
    """
    POST /api/payments/verify/
    Body: {"payment_id": 9, "razorpay_order_id": ..., "razorpay_payment_id": ..., "razorpay_signature": ...}
       or {"payment_id": 9, "payment_intent_id": "pi_..."}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        proof = dict(serializer.validated_data)
        payment = get_object_or_404(Payment, pk=proof.pop("payment_id"))

        payment = services.verify(payment, proof, request.user)
        return Response(PaymentSerializer(payment).data)


class RequestRefundView(APIView):
    """
    POST /api/payments/<id>/refund/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        payment = get_object_or_404(Payment.objects.select_related("registration__event"), pk=pk)
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        refund = services.request_refund(payment, request.user, reason=serializer.validated_data.get("reason", ""))
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class ProcessRefundView(APIView):
    """
    PUT /api/payments/refunds/<id>/process/
    Body: {"action": "approve" | "reject", "notes": "..."}
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        refund = get_object_or_404(Refund.objects.select_related("event"), pk=pk)
        serializer = ProcessRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        refund = services.process_refund(
            refund,
            serializer.validated_data["action"],
            request.user,
            notes=serializer.validated_data.get("notes"),
        )
        return Response(RefundSerializer(refund).data)


@method_decorator(csrf_exempt, name="dispatch")
class WebhookView(APIView):
    """
    Gateway callbacks. Authenticated by signature only, never by session
    or token. Unknown and ignored events still answer 200 so the gateway
    stops retrying.
    """
    authentication_classes = []
    permission_classes = [AllowAny]
    gateway_name = None
    signature_header = None

    def post(self, request):
        signature = request.META.get(self.signature_header, "")
        payment = services.handle_webhook(self.gateway_name, request.body, signature)

        logger.info(
            f"Webhook processed: gateway={self.gateway_name}, "
            f"payment={payment.pk if payment else None}"
        )
        return Response({"received": True}, status=status.HTTP_200_OK)


class StripeWebhookView(WebhookView):
    """POST /api/payments/webhook/stripe/"""
    gateway_name = Payment.GATEWAY_STRIPE
    signature_header = "HTTP_STRIPE_SIGNATURE"


class RazorpayWebhookView(WebhookView):
    """POST /api/payments/webhook/razorpay/"""
    gateway_name = Payment.GATEWAY_RAZORPAY
    signature_header = "HTTP_X_RAZORPAY_SIGNATURE"
