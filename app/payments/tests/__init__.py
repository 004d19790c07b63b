"""
Tests for payments app.

This package contains test modules for:
- test_adapters.py: RazorpayAdapter, amount conversion, signatures
- test_models.py: Payment and WebhookEvent model tests
- test_services.py: PaymentService and WebhookService tests
- test_tasks.py: Webhook processing tasks
- test_views.py: API endpoint tests
- test_webhooks.py: Webhook intake view tests

Usage:
    pytest payments/tests/
    pytest payments/tests/test_services.py
"""
