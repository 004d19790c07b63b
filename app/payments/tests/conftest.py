"""
Pytest fixtures for payment tests.

This module provides:
- Test Razorpay credentials (applied to every payment test)
- A payer (client) and payee (freelancer), plus an outsider
- Signing helpers that produce the signatures Razorpay would send
- A mocked Razorpay SDK client

Usage:
    def test_verify(payment, payer, checkout_signature):
        signature = checkout_signature(payment.order_id, "pay_123")
        result = PaymentService.verify_payment(payer, payment.order_id, "pay_123", signature)
        assert result.success
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import FreelancerFactory, UserFactory
from payments.adapters import RazorpayAdapter
from payments.tests.factories import (
    TEST_KEY_ID,
    TEST_KEY_SECRET,
    TEST_WEBHOOK_SECRET,
    PaymentFactory,
    hmac_hex,
)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def razorpay_settings(settings):
    """Configure test Razorpay credentials."""
    settings.RAZORPAY_KEY_ID = TEST_KEY_ID
    settings.RAZORPAY_KEY_SECRET = TEST_KEY_SECRET
    settings.RAZORPAY_WEBHOOK_SECRET = TEST_WEBHOOK_SECRET
    settings.RAZORPAY_API_TIMEOUT_SECONDS = 10
    return settings


# =============================================================================
# Signing Helpers
# =============================================================================


@pytest.fixture
def checkout_signature():
    """Sign "{order_id}|{payment_id}" the way Razorpay Checkout does."""

    def sign(order_id: str, payment_id: str) -> str:
        return hmac_hex(TEST_KEY_SECRET, f"{order_id}|{payment_id}".encode())

    return sign


@pytest.fixture
def webhook_signature():
    """Sign a raw webhook body the way Razorpay does."""

    def sign(body: bytes) -> str:
        return hmac_hex(TEST_WEBHOOK_SECRET, body)

    return sign


# =============================================================================
# User and Payment Fixtures
# =============================================================================


@pytest.fixture
def payer(db):
    """Client paying for a gig."""
    return UserFactory(display_name="Asha Client")


@pytest.fixture
def payee(db):
    """Freelancer being paid."""
    return FreelancerFactory(display_name="Ravi Freelancer")


@pytest.fixture
def outsider(db):
    """User who is neither payer nor payee."""
    return UserFactory()


@pytest.fixture
def payment(payer, payee):
    """Order created, awaiting checkout."""
    return PaymentFactory(payer=payer, payee=payee, gig_id="gig-42")


@pytest.fixture
def paid_payment(payer, payee):
    """Verified payment."""
    return PaymentFactory(payer=payer, payee=payee, gig_id="gig-42", paid=True)


# =============================================================================
# Razorpay Client Mock
# =============================================================================


@pytest.fixture
def razorpay_client(mocker):
    """
    Mocked razorpay.Client returned by RazorpayAdapter._get_client.

    Configure responses per test, e.g.:
        razorpay_client.order.create.return_value = {...}
    """
    client = mocker.MagicMock(name="razorpay.Client")
    mocker.patch.object(RazorpayAdapter, "_get_client", return_value=client)
    return client


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client_for():
    """Build an APIClient carrying a JWT for any user."""

    def make(user):
        client = APIClient()
        token = RefreshToken.for_user(user).access_token
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return make


@pytest.fixture
def payer_api(api_client_for, payer):
    return api_client_for(payer)


@pytest.fixture
def payee_api(api_client_for, payee):
    return api_client_for(payee)


@pytest.fixture
def outsider_api(api_client_for, outsider):
    return api_client_for(outsider)
