from django.contrib import admin

from .models import Invoice, Payment, Refund


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "registration", "user", "amount", "currency", "gateway", "status", "paid_at")
    list_filter = ("gateway", "status")
    search_fields = ("order_id", "transaction_id", "user__username")
    readonly_fields = ("gateway_response", "created_at", "updated_at")


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("id", "payment", "user", "amount", "refund_percentage", "status", "requested_at")
    list_filter = ("status",)
    search_fields = ("refund_transaction_id", "user__username")
    readonly_fields = ("original_amount", "refund_percentage", "amount", "gateway_response")


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "user", "event", "amount", "status", "paid_at")
    list_filter = ("status",)
    search_fields = ("invoice_number", "user__username")
