"""
URL configuration for the payments app.

Routes:
    GET  /                      - The caller's payments
    POST /orders/               - Create Razorpay order
    POST /verify/               - Verify Checkout signature
    POST /refund/               - Refund a paid payment
    POST /webhooks/razorpay/    - Razorpay webhook endpoint
    GET  /<order_id>/           - Payment detail

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments.views import (
    OrderCreateView,
    PaymentDetailView,
    PaymentListView,
    PaymentVerifyView,
    RefundView,
    razorpay_webhook,
)

app_name = "payments"

urlpatterns = [
    path("", PaymentListView.as_view(), name="payment-list"),
    path("orders/", OrderCreateView.as_view(), name="order-create"),
    path("verify/", PaymentVerifyView.as_view(), name="payment-verify"),
    path("refund/", RefundView.as_view(), name="payment-refund"),
    # Webhook endpoints
    path("webhooks/razorpay/", razorpay_webhook, name="razorpay_webhook"),
    path("<str:order_id>/", PaymentDetailView.as_view(), name="payment-detail"),
]
