"""
Payments app configuration.

This app provides Razorpay payment processing:
- Order creation and Checkout signature verification
- Refunds
- Webhook intake
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
