# payments/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q


class Payment(models.Model):
    GATEWAY_STRIPE = "stripe"
    GATEWAY_RAZORPAY = "razorpay"

    GATEWAY_CHOICES = [
        (GATEWAY_STRIPE, "Stripe"),
        (GATEWAY_RAZORPAY, "Razorpay"),
    ]

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    registration = models.ForeignKey(
        "events.Registration",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    event = models.ForeignKey(
        "events.Event",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default="INR")
    gateway = models.CharField(max_length=16, choices=GATEWAY_CHOICES)

    # Gateway-side order (Razorpay order id / Stripe PaymentIntent id)
    order_id = models.CharField(max_length=128, blank=True, db_index=True)
    # Gateway payment id; a webhook for an already stored id is a duplicate
    transaction_id = models.CharField(max_length=128, unique=True, blank=True, null=True)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    gateway_response = models.JSONField(default=dict, blank=True)
    failure_reason = models.CharField(max_length=500, blank=True)

    paid_at = models.DateTimeField(blank=True, null=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    refunded_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            # One live payment attempt per registration; failed attempts may pile up
            models.UniqueConstraint(
                fields=["registration"],
                condition=Q(status__in=["pending", "completed"]),
                name="unique_live_payment_per_registration",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
            models.Index(fields=["gateway", "order_id"], name="payment_gateway_order_idx"),
        ]

    def __str__(self):
        return f"Payment {self.pk} ({self.gateway}, {self.status})"

    @property
    def is_completed(self):
        return self.status == self.STATUS_COMPLETED


class Refund(models.Model):
    STATUS_PENDING = "pending"
    STATUS_REJECTED = "rejected"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_REJECTED, "Rejected"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    # Statuses that may still be sent to the gateway
    PROCESSABLE_STATUSES = (STATUS_PENDING, STATUS_FAILED)

    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, related_name="refunds")
    registration = models.ForeignKey(
        "events.Registration",
        on_delete=models.CASCADE,
        related_name="refunds",
    )
    event = models.ForeignKey("events.Event", on_delete=models.CASCADE, related_name="refunds")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="refunds",
    )

    # Policy snapshot taken when the refund is opened
    original_amount = models.DecimalField(max_digits=10, decimal_places=2)
    refund_percentage = models.PositiveIntegerField()
    amount = models.DecimalField(max_digits=10, decimal_places=2)

    reason = models.CharField(max_length=500, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    requested_at = models.DateTimeField(auto_now_add=True)

    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refunds_approved",
    )
    approved_at = models.DateTimeField(blank=True, null=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refunds_processed",
    )
    processed_at = models.DateTimeField(blank=True, null=True)
    rejection_reason = models.CharField(max_length=500, blank=True)

    refund_transaction_id = models.CharField(max_length=128, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["-requested_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=~Q(status="rejected"),
                name="unique_open_refund_per_payment",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "requested_at"], name="refund_status_requested_idx"),
        ]

    def __str__(self):
        return f"Refund {self.pk} ({self.status}) for payment {self.payment_id}"

    @property
    def idempotency_key(self):
        return f"refund-{self.pk}"


class Invoice(models.Model):
    STATUS_PAID = "paid"
    STATUS_REFUNDED = "refunded"

    STATUS_CHOICES = [
        (STATUS_PAID, "Paid"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    invoice_number = models.CharField(max_length=32, unique=True)
    payment = models.OneToOneField(Payment, on_delete=models.CASCADE, related_name="invoice")
    registration = models.ForeignKey(
        "events.Registration",
        on_delete=models.CASCADE,
        related_name="invoices",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="invoices",
    )
    event = models.ForeignKey("events.Event", on_delete=models.CASCADE, related_name="invoices")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default="INR")
    line_items = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PAID)
    paid_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.invoice_number
