"""
Payment admin configuration.

Provides admin interfaces for:
- Payment inspection (order, parties, status, refund)
- Webhook event processing status
"""

from django.contrib import admin

from payments.models import Payment, WebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Razorpay identifiers, amounts and status are read-only; status is a
    protected FSM field and changes go through PaymentService so the chat
    is notified.
    """

    list_display = [
        "order_id",
        "payer",
        "payee",
        "amount",
        "currency",
        "status",
        "gig_id",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["order_id", "payment_id", "receipt", "gig_id", "payer__email", "payee__email"]
    readonly_fields = [
        "id",
        "order_id",
        "payment_id",
        "receipt",
        "status",
        "amount",
        "currency",
        "notes",
        "paid_at",
        "refund_id",
        "refunded_amount",
        "refunded_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["payer", "payee"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "order_id", "payment_id", "receipt", "status")}),
        ("Parties", {"fields": ("payer", "payee", "gig_id")}),
        ("Amount", {"fields": ("amount", "currency", "notes")}),
        (
            "Outcome",
            {"fields": ("paid_at", "refund_id", "refunded_amount", "refunded_at")},
        ),
        (
            "Timestamps",
            {"fields": ("created_at", "updated_at"), "classes": ("collapse",)},
        ),
    )


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "event_id",
        "event_type",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "event_id", "event_type", "status")}),
        ("Processing", {"fields": ("processed_at", "retry_count")}),
        ("Error Info", {"fields": ("error_message",), "classes": ("collapse",)}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        (
            "Timestamps",
            {"fields": ("created_at", "updated_at"), "classes": ("collapse",)},
        ),
    )
