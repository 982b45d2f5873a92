# payments/urls.py
from django.urls import path

from .views import (
    InitiatePaymentView,
    ProcessRefundView,
    RazorpayWebhookView,
    RequestRefundView,
    StripeWebhookView,
    VerifyPaymentView,
)

urlpatterns = [
    path("initiate/", InitiatePaymentView.as_view(), name="payment-initiate"),
    path("verify/", VerifyPaymentView.as_view(), name="payment-verify"),
    path("<int:pk>/refund/", RequestRefundView.as_view(), name="payment-refund"),
    path("refunds/<int:pk>/process/", ProcessRefundView.as_view(), name="refund-process"),
    path("webhook/stripe/", StripeWebhookView.as_view(), name="webhook-stripe"),
    path("webhook/razorpay/", RazorpayWebhookView.as_view(), name="webhook-razorpay"),
]
