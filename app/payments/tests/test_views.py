"""
Tests for payments API views.

This module tests the REST endpoints:
- OrderCreateView, PaymentVerifyView, RefundView
- PaymentListView, PaymentDetailView

Test Organization:
    - One test class per endpoint
    - Tests follow pattern: test_<method>_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable HTTP behavior:
    - Response status codes and error codes
    - Response body structure
    - Payer/payee access enforcement
"""

from razorpay.errors import ServerError
from rest_framework import status
from rest_framework.test import APIClient

from payments.constants import PaymentErrorCode
from payments.models import PaymentStatus
from payments.tests.factories import (
    TEST_KEY_ID,
    PaymentFactory,
    fresh_payment,
    order_response,
    refund_response,
)


# =============================================================================
# URL Constants
# =============================================================================


PAYMENTS_URL = "/api/v1/payments/"
ORDERS_URL = "/api/v1/payments/orders/"
VERIFY_URL = "/api/v1/payments/verify/"
REFUND_URL = "/api/v1/payments/refund/"


def detail_url(order_id: str) -> str:
    return f"{PAYMENTS_URL}{order_id}/"


# =============================================================================
# OrderCreateView
# =============================================================================


class TestOrderCreateView:
    """Tests for POST /api/v1/payments/orders/."""

    def test_post_unauthenticated_returns_401(self, db):
        response = APIClient().post(ORDERS_URL, {}, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_post_creates_order_for_checkout(self, payer_api, payee, razorpay_client):
        razorpay_client.order.create.return_value = order_response(150000, receipt="rcpt_x")

        response = payer_api.post(
            ORDERS_URL,
            {"payee_id": payee.pk, "amount": "1500.00", "gig_id": "gig-42"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["key_id"] == TEST_KEY_ID
        assert response.data["order"] == {
            "id": "order_Test123456789",
            "amount": 150000,
            "currency": "INR",
            "receipt": "rcpt_x",
        }
        assert response.data["payment"]["status"] == PaymentStatus.CREATED
        assert response.data["payment"]["amount"] == "1500.00"
        assert response.data["payment"]["payee"]["id"] == payee.pk

    def test_post_amount_below_minimum_returns_400(self, payer_api, payee, razorpay_client):
        response = payer_api.post(
            ORDERS_URL, {"payee_id": payee.pk, "amount": "0.50"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        razorpay_client.order.create.assert_not_called()

    def test_post_too_many_notes_returns_400(self, payer_api, payee, razorpay_client):
        notes = {f"key{i}": "value" for i in range(13)}

        response = payer_api.post(
            ORDERS_URL,
            {"payee_id": payee.pk, "amount": "10.00", "notes": notes},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "notes" in response.data

    def test_post_to_self_returns_400(self, payer_api, payer, razorpay_client):
        response = payer_api.post(
            ORDERS_URL, {"payee_id": payer.pk, "amount": "10.00"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == PaymentErrorCode.SAME_USER

    def test_post_unknown_payee_returns_404(self, payer_api, razorpay_client):
        response = payer_api.post(
            ORDERS_URL, {"payee_id": 999999, "amount": "10.00"}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == PaymentErrorCode.USER_NOT_FOUND

    def test_post_gateway_down_returns_502(self, payer_api, payee, razorpay_client):
        razorpay_client.order.create.side_effect = ServerError("Service unavailable")

        response = payer_api.post(
            ORDERS_URL, {"payee_id": payee.pk, "amount": "10.00"}, format="json"
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["error_code"] == "RAZORPAY_UNAVAILABLE"


# =============================================================================
# PaymentVerifyView
# =============================================================================


class TestPaymentVerifyView:
    """Tests for POST /api/v1/payments/verify/."""

    def body(self, payment, checkout_signature, payment_id="pay_View123", signature=None):
        return {
            "razorpay_order_id": payment.order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or checkout_signature(payment.order_id, payment_id),
        }

    def test_post_valid_signature_returns_paid_payment(
        self, payer_api, payment, checkout_signature
    ):
        response = payer_api.post(
            VERIFY_URL, self.body(payment, checkout_signature), format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PaymentStatus.PAID
        assert response.data["payment_id"] == "pay_View123"

    def test_post_invalid_signature_returns_400(self, payer_api, payment, checkout_signature):
        response = payer_api.post(
            VERIFY_URL,
            self.body(payment, checkout_signature, signature="f" * 64),
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == PaymentErrorCode.INVALID_SIGNATURE
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.FAILED

    def test_post_by_payee_returns_403(self, payee_api, payment, checkout_signature):
        response = payee_api.post(
            VERIFY_URL, self.body(payment, checkout_signature), format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == PaymentErrorCode.NOT_PAYER

    def test_post_missing_fields_returns_400(self, payer_api, payment):
        response = payer_api.post(
            VERIFY_URL, {"razorpay_order_id": payment.order_id}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "razorpay_signature" in response.data


# =============================================================================
# RefundView
# =============================================================================


class TestRefundView:
    """Tests for POST /api/v1/payments/refund/."""

    def test_post_full_refund(self, payer_api, paid_payment, razorpay_client):
        razorpay_client.payment.refund.return_value = refund_response(
            paid_payment.payment_id, 150000
        )

        response = payer_api.post(
            REFUND_URL,
            {"order_id": paid_payment.order_id, "reason": "Gig cancelled"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == PaymentStatus.REFUNDED
        assert response.data["refunded_amount"] == "1500.00"

    def test_post_partial_refund_by_payee(self, payee_api, paid_payment, razorpay_client):
        razorpay_client.payment.refund.return_value = refund_response(
            paid_payment.payment_id, 25000
        )

        response = payee_api.post(
            REFUND_URL,
            {"order_id": paid_payment.order_id, "amount": "250.00"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refunded_amount"] == "250.00"

    def test_post_by_outsider_returns_403(self, outsider_api, paid_payment, razorpay_client):
        response = outsider_api.post(
            REFUND_URL, {"order_id": paid_payment.order_id}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_post_unpaid_returns_400(self, payer_api, payment, razorpay_client):
        response = payer_api.post(REFUND_URL, {"order_id": payment.order_id}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == PaymentErrorCode.INVALID_STATUS

    def test_post_unknown_order_returns_404(self, payer_api, razorpay_client):
        response = payer_api.post(REFUND_URL, {"order_id": "order_missing"}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# PaymentListView / PaymentDetailView
# =============================================================================


class TestPaymentListView:
    """Tests for GET /api/v1/payments/."""

    def test_get_lists_own_payments(self, payer_api, payer, payee, outsider):
        own = PaymentFactory(payer=payer, payee=payee)
        PaymentFactory(payer=outsider, payee=payee)

        response = payer_api.get(PAYMENTS_URL)

        assert response.status_code == status.HTTP_200_OK
        assert [p["order_id"] for p in response.data] == [own.order_id]

    def test_get_payee_sees_received_payment(self, payee_api, payment):
        response = payee_api.get(PAYMENTS_URL)

        assert [p["order_id"] for p in response.data] == [payment.order_id]
        assert response.data[0]["amount"] == "1500.00"


class TestPaymentDetailView:
    """Tests for GET /api/v1/payments/{order_id}/."""

    def test_get_as_payer(self, payer_api, payment):
        response = payer_api.get(detail_url(payment.order_id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == str(payment.pk)
        assert response.data["payer"]["display_name"] == "Asha Client"

    def test_get_as_outsider_returns_403(self, outsider_api, payment):
        response = outsider_api.get(detail_url(payment.order_id))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_get_unknown_returns_404(self, payer_api):
        response = payer_api.get(detail_url("order_missing"))

        assert response.status_code == status.HTTP_404_NOT_FOUND
