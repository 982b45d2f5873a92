from rest_framework import serializers

from .models import Invoice, Payment, Refund
from .services import REFUND_APPROVE, REFUND_REJECT


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = ["id", "invoice_number", "payment", "amount", "currency", "line_items", "status", "paid_at"]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True, default=None)
    invoice = InvoiceSerializer(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "registration",
            "event",
            "amount",
            "currency",
            "gateway",
            "order_id",
            "transaction_id",
            "status",
            "failure_reason",
            "paid_at",
            "refund_amount",
            "refunded_at",
            "invoice_number",
            "invoice",
            "created_at",
        ]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = [
            "id",
            "payment",
            "registration",
            "event",
            "original_amount",
            "refund_percentage",
            "amount",
            "reason",
            "status",
            "requested_at",
            "approved_at",
            "processed_at",
            "rejection_reason",
            "refund_transaction_id",
            "notes",
        ]
        read_only_fields = fields


class InitiatePaymentSerializer(serializers.Serializer):
    registration_id = serializers.IntegerField()
    gateway = serializers.ChoiceField(choices=Payment.GATEWAY_CHOICES)


class VerifyPaymentSerializer(serializers.Serializer):
    payment_id = serializers.IntegerField()
    # Razorpay checkout proof
    razorpay_order_id = serializers.CharField(required=False)
    razorpay_payment_id = serializers.CharField(required=False)
    razorpay_signature = serializers.CharField(required=False)
    # Stripe confirmation proof
    payment_intent_id = serializers.CharField(required=False)

    def validate(self, attrs):
        has_razorpay = all(
            attrs.get(k) for k in ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
        )
        if not has_razorpay and not attrs.get("payment_intent_id"):
            raise serializers.ValidationError("Payment proof is required.")
        return attrs


class RefundRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class ProcessRefundSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=[REFUND_APPROVE, REFUND_REJECT])
    notes = serializers.CharField(required=False, allow_blank=True)
