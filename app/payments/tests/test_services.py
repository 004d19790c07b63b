"""
Tests for the payment service layer.

This module tests:
- PaymentService: order creation, checkout verification, refunds, queries
- WebhookService: recording and dispatching Razorpay webhook events

Test Organization:
    - Each service method has its own test class
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable behavior, not implementation details:
    - ServiceResult success/failure states and error codes
    - Payment status changes (and their absence on failure)
    - System messages posted to the payer/payee chat
    The Razorpay SDK client is mocked; signatures are computed with the
    test secrets, exactly as Razorpay would.
"""

import hashlib
import json
from decimal import Decimal

import pytest
from razorpay.errors import BadRequestError, ServerError

from authentication.tests.factories import UserFactory
from chat.models import Chat, Message, MessageType, SystemMessageEvent
from chat.tests.factories import ChatFactory
from payments.adapters import IdempotencyKeyGenerator
from payments.constants import PaymentErrorCode, WebhookEventType
from payments.models import Payment, PaymentStatus, WebhookEvent
from payments.services import PaymentService, WebhookService
from payments.tests.factories import (
    PaymentFactory,
    WebhookEventFactory,
    fresh_payment,
    order_response,
    payment_payload,
    refund_response,
)


def system_messages(event: str | None = None) -> list[Message]:
    messages = Message.objects.filter(message_type=MessageType.SYSTEM).order_by("created_at")
    if event is not None:
        messages = messages.filter(payload__event=event)
    return list(messages)


def chat_between(user_a, user_b) -> Chat:
    lower_id, higher_id = Chat.canonical_pair(user_a.pk, user_b.pk)
    return Chat.objects.get(user_lower_id=lower_id, user_higher_id=higher_id)


@pytest.fixture
def group_send(mocker):
    return mocker.patch("chat.events._group_send")


# =============================================================================
# PaymentService.create_order
# =============================================================================


class TestCreateOrder:
    """
    Tests for PaymentService.create_order().

    Verifies:
    - The Razorpay order is created in paise with identifying notes
    - A local Payment mirrors the order
    - Invalid payees and amounts are rejected before calling Razorpay
    """

    def test_creates_order_and_payment(self, payer, payee, razorpay_client):
        razorpay_client.order.create.return_value = order_response(150000, receipt="rcpt_x")

        result = PaymentService.create_order(
            payer=payer,
            payee_id=payee.pk,
            amount=Decimal("1500.00"),
            gig_id="gig-42",
            notes={"milestone": "1"},
        )

        assert result.success
        payment = result.data
        assert payment.order_id == "order_Test123456789"
        assert payment.status == PaymentStatus.CREATED
        assert payment.payer == payer
        assert payment.payee == payee
        assert payment.gig_id == "gig-42"
        assert payment.amount == Decimal("1500.00")
        assert payment.currency == "INR"
        assert payment.receipt == "rcpt_x"
        assert payment.notes == {
            "milestone": "1",
            "payer_id": str(payer.pk),
            "payee_id": str(payee.pk),
            "gig_id": "gig-42",
        }

    def test_sends_amount_in_paise_with_generated_receipt(self, payer, payee, razorpay_client):
        razorpay_client.order.create.return_value = order_response(155050)

        PaymentService.create_order(payer=payer, payee_id=payee.pk, amount=Decimal("1550.50"))

        data = razorpay_client.order.create.call_args.kwargs["data"]
        assert data["amount"] == 155050
        assert data["currency"] == "INR"
        assert data["receipt"].startswith(f"rcpt_{payer.pk}_")
        assert data["notes"]["payee_id"] == str(payee.pk)

    def test_does_not_post_chat_message(self, payer, payee, razorpay_client):
        razorpay_client.order.create.return_value = order_response()

        PaymentService.create_order(payer=payer, payee_id=payee.pk, amount=Decimal("1500.00"))

        assert system_messages() == []

    def test_paying_yourself_fails(self, payer, razorpay_client):
        result = PaymentService.create_order(payer=payer, payee_id=payer.pk, amount=Decimal("10"))

        assert not result.success
        assert result.error_code == PaymentErrorCode.SAME_USER
        razorpay_client.order.create.assert_not_called()

    def test_unknown_payee_fails(self, payer, razorpay_client):
        result = PaymentService.create_order(payer=payer, payee_id=999999, amount=Decimal("10"))

        assert result.error_code == PaymentErrorCode.USER_NOT_FOUND
        razorpay_client.order.create.assert_not_called()

    def test_inactive_payee_fails(self, payer, razorpay_client):
        inactive = UserFactory(is_active=False)

        result = PaymentService.create_order(
            payer=payer, payee_id=inactive.pk, amount=Decimal("10")
        )

        assert result.error_code == PaymentErrorCode.USER_NOT_FOUND

    @pytest.mark.parametrize(
        "amount",
        [Decimal("0.50"), Decimal("0"), Decimal("10.005"), Decimal("500000.01")],
    )
    def test_invalid_amount_fails(self, payer, payee, razorpay_client, amount):
        result = PaymentService.create_order(payer=payer, payee_id=payee.pk, amount=amount)

        assert result.error_code == PaymentErrorCode.INVALID_AMOUNT
        razorpay_client.order.create.assert_not_called()
        assert not Payment.objects.exists()

    def test_razorpay_error_creates_nothing(self, payer, payee, razorpay_client):
        """
        A gateway failure leaves no local Payment behind.

        Why it matters: a Payment without a Razorpay order could never be
        paid or verified.
        """
        razorpay_client.order.create.side_effect = ServerError("Service unavailable")

        result = PaymentService.create_order(
            payer=payer, payee_id=payee.pk, amount=Decimal("1500.00")
        )

        assert not result.success
        assert result.error_code == "RAZORPAY_UNAVAILABLE"
        assert not Payment.objects.exists()


# =============================================================================
# PaymentService.verify_payment
# =============================================================================


class TestVerifyPayment:
    """
    Tests for PaymentService.verify_payment().

    Verifies:
    - A valid signature marks the payment paid and posts one system message
    - An invalid signature marks the payment failed
    - Verification is idempotent
    - Only the payer can verify
    """

    PAYMENT_ID = "pay_Verify123"

    def verify(self, user, payment, checkout_signature, payment_id=PAYMENT_ID, signature=None):
        if signature is None:
            signature = checkout_signature(payment.order_id, payment_id)
        return PaymentService.verify_payment(user, payment.order_id, payment_id, signature)

    def test_valid_signature_marks_paid(self, payer, payment, checkout_signature):
        result = self.verify(payer, payment, checkout_signature)

        assert result.success
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.PAID
        assert payment.payment_id == self.PAYMENT_ID
        assert payment.paid_at is not None

    def test_valid_signature_posts_system_message(self, payer, payee, payment, checkout_signature):
        self.verify(payer, payment, checkout_signature)

        chat = chat_between(payer, payee)
        assert chat.gig_id == "gig-42"
        [message] = system_messages()
        assert message.chat == chat
        assert message.sender is None
        assert message.payload == {
            "event": SystemMessageEvent.PAYMENT_RECEIVED,
            "data": {
                "order_id": payment.order_id,
                "payment_id": self.PAYMENT_ID,
                "amount": "1500.00",
                "currency": "INR",
                "gig_id": "gig-42",
            },
        }

    def test_reuses_existing_chat(self, payer, payee, payment, checkout_signature):
        chat = ChatFactory(user_lower=payer, user_higher=payee)

        self.verify(payer, payment, checkout_signature)

        assert Chat.objects.count() == 1
        assert system_messages()[0].chat_id == chat.pk

    def test_system_message_is_broadcast_after_commit(
        self, payer, payment, checkout_signature, group_send, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            self.verify(payer, payment, checkout_signature)

        sent_types = [c.args[1]["type"] for c in group_send.call_args_list]
        assert "message.created" in sent_types

    def test_invalid_signature_marks_failed(self, payer, payment, checkout_signature):
        result = self.verify(payer, payment, checkout_signature, signature="0" * 64)

        assert not result.success
        assert result.error_code == PaymentErrorCode.INVALID_SIGNATURE
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.FAILED
        assert system_messages() == []

    def test_signature_for_other_payment_rejected(self, payer, payment, checkout_signature):
        signature = checkout_signature(payment.order_id, "pay_Other")

        result = self.verify(payer, payment, checkout_signature, signature=signature)

        assert result.error_code == PaymentErrorCode.INVALID_SIGNATURE

    def test_invalid_signature_does_not_downgrade_paid(
        self, payer, paid_payment, checkout_signature
    ):
        result = self.verify(payer, paid_payment, checkout_signature, signature="0" * 64)

        assert result.error_code == PaymentErrorCode.INVALID_SIGNATURE
        paid_payment = fresh_payment(paid_payment)
        assert paid_payment.status == PaymentStatus.PAID

    def test_verifying_twice_posts_one_message(self, payer, payment, checkout_signature):
        """
        A repeated verification succeeds without a second system message.

        Why it matters: Checkout success handlers can fire more than once
        (retries, double submits) and the chat must show one payment.
        """
        first = self.verify(payer, payment, checkout_signature)
        second = self.verify(payer, payment, checkout_signature)

        assert first.success
        assert second.success
        assert second.data.status == PaymentStatus.PAID
        assert len(system_messages()) == 1

    def test_different_payment_on_paid_order_fails(self, payer, paid_payment, checkout_signature):
        result = self.verify(payer, paid_payment, checkout_signature, payment_id="pay_Second")

        assert result.error_code == PaymentErrorCode.PAYMENT_MISMATCH

    def test_failed_payment_can_be_paid_by_retry(self, payer, payee, checkout_signature):
        payment = PaymentFactory(payer=payer, payee=payee, failed=True)

        result = self.verify(payer, payment, checkout_signature)

        assert result.success
        assert result.data.status == PaymentStatus.PAID

    def test_refunded_payment_cannot_be_verified(self, payer, payee, checkout_signature):
        payment = PaymentFactory(payer=payer, payee=payee, refunded=True)

        result = self.verify(payer, payment, checkout_signature, payment_id="pay_New")

        assert result.error_code == PaymentErrorCode.INVALID_STATUS

    def test_payee_cannot_verify(self, payee, payment, checkout_signature):
        result = self.verify(payee, payment, checkout_signature)

        assert result.error_code == PaymentErrorCode.NOT_PAYER
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.CREATED

    def test_unknown_order_fails(self, payer, checkout_signature):
        result = PaymentService.verify_payment(
            payer, "order_missing", "pay_1", checkout_signature("order_missing", "pay_1")
        )

        assert result.error_code == PaymentErrorCode.PAYMENT_NOT_FOUND

    def test_missing_fields_fail_validation(self, payer, payment):
        result = PaymentService.verify_payment(payer, payment.order_id, "", "")

        assert result.error_code == "VALIDATION_ERROR"


# =============================================================================
# PaymentService.refund
# =============================================================================


class TestRefund:
    """
    Tests for PaymentService.refund().

    Verifies:
    - Full and partial refunds through Razorpay
    - Either party can refund; outsiders cannot
    - Only paid payments are refundable
    """

    def test_full_refund(self, payer, paid_payment, razorpay_client):
        razorpay_client.payment.refund.return_value = refund_response(
            paid_payment.payment_id, 150000
        )

        result = PaymentService.refund(payer, paid_payment.order_id, reason="Gig cancelled")

        assert result.success
        razorpay_client.payment.refund.assert_called_once_with(
            paid_payment.payment_id,
            {
                "notes": {
                    "reason": "Gig cancelled",
                    "requested_by": str(payer.pk),
                    "idempotency_key": IdempotencyKeyGenerator.generate("refund", paid_payment.pk),
                },
            },
            timeout=10,
        )
        paid_payment = fresh_payment(paid_payment)
        assert paid_payment.status == PaymentStatus.REFUNDED
        assert paid_payment.refund_id == "rfnd_Test123456789"
        assert paid_payment.refunded_amount == Decimal("1500.00")
        assert paid_payment.refunded_at is not None

    def test_partial_refund_by_payee(self, payee, paid_payment, razorpay_client):
        razorpay_client.payment.refund.return_value = refund_response(
            paid_payment.payment_id, 50000
        )

        result = PaymentService.refund(payee, paid_payment.order_id, amount=Decimal("500.00"))

        assert result.success
        data = razorpay_client.payment.refund.call_args.args[1]
        assert data["amount"] == 50000
        assert data["notes"]["reason"] == "Refund requested"
        assert result.data.status == PaymentStatus.REFUNDED
        assert result.data.refunded_amount == Decimal("500.00")

    def test_refund_posts_system_message(self, payer, payee, paid_payment, razorpay_client):
        razorpay_client.payment.refund.return_value = refund_response(
            paid_payment.payment_id, 150000
        )

        PaymentService.refund(payer, paid_payment.order_id)

        [message] = system_messages(SystemMessageEvent.PAYMENT_REFUNDED)
        assert message.chat == chat_between(payer, payee)
        assert message.payload["data"] == {
            "order_id": paid_payment.order_id,
            "refund_id": "rfnd_Test123456789",
            "amount": "1500.00",
        }

    def test_outsider_cannot_refund(self, outsider, paid_payment, razorpay_client):
        result = PaymentService.refund(outsider, paid_payment.order_id)

        assert result.error_code == PaymentErrorCode.NOT_PARTICIPANT
        razorpay_client.payment.refund.assert_not_called()

    def test_unpaid_payment_cannot_be_refunded(self, payer, payment, razorpay_client):
        result = PaymentService.refund(payer, payment.order_id)

        assert result.error_code == PaymentErrorCode.INVALID_STATUS
        razorpay_client.payment.refund.assert_not_called()

    def test_refunded_payment_cannot_be_refunded_again(self, payer, payee, razorpay_client):
        payment = PaymentFactory(payer=payer, payee=payee, refunded=True)

        result = PaymentService.refund(payer, payment.order_id)

        assert result.error_code == PaymentErrorCode.INVALID_STATUS

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("1500.01")])
    def test_invalid_amount_fails(self, payer, paid_payment, razorpay_client, amount):
        result = PaymentService.refund(payer, paid_payment.order_id, amount=amount)

        assert result.error_code == PaymentErrorCode.INVALID_AMOUNT
        razorpay_client.payment.refund.assert_not_called()

    def test_gateway_rejection_keeps_payment_paid(self, payer, paid_payment, razorpay_client):
        razorpay_client.payment.refund.side_effect = BadRequestError(
            "The payment has been fully refunded already"
        )

        result = PaymentService.refund(payer, paid_payment.order_id)

        assert result.error_code == "RAZORPAY_BAD_REQUEST"
        assert "fully refunded" in result.error
        paid_payment = fresh_payment(paid_payment)
        assert paid_payment.status == PaymentStatus.PAID
        assert system_messages() == []

    def test_gateway_outage_returns_payment_to_paid(self, payer, paid_payment, razorpay_client):
        razorpay_client.payment.refund.side_effect = ServerError("Service unavailable")

        result = PaymentService.refund(payer, paid_payment.order_id)

        assert result.error_code == "RAZORPAY_UNAVAILABLE"
        assert fresh_payment(paid_payment).status == PaymentStatus.PAID

    def test_refund_in_progress_is_not_sent_to_gateway(self, payer, payee, razorpay_client):
        """
        A second refund request while one is in flight is rejected locally.

        Why it matters: two concurrent partial refunds would otherwise both
        succeed at Razorpay while only one gets recorded.
        """
        payment = PaymentFactory(payer=payer, payee=payee, refund_pending=True)

        result = PaymentService.refund(payer, payment.order_id, amount=Decimal("100.00"))

        assert result.error_code == PaymentErrorCode.INVALID_STATUS
        razorpay_client.payment.refund.assert_not_called()
        assert fresh_payment(payment).status == PaymentStatus.REFUND_PENDING

    def test_payment_is_reserved_while_gateway_is_called(
        self, payer, payee, paid_payment, razorpay_client
    ):
        """
        The payment is REFUND_PENDING during the Razorpay call.

        Why it matters: the reservation is what turns a concurrent request
        away; a request arriving mid-call must see it.
        """
        seen = {}

        def refund_and_race(payment_id, data, timeout):
            seen["status"] = fresh_payment(paid_payment).status
            seen["race"] = PaymentService.refund(payee, paid_payment.order_id)
            return refund_response(payment_id, 150000)

        razorpay_client.payment.refund.side_effect = refund_and_race

        result = PaymentService.refund(payer, paid_payment.order_id)

        assert result.success
        assert seen["status"] == PaymentStatus.REFUND_PENDING
        assert seen["race"].error_code == PaymentErrorCode.INVALID_STATUS
        assert razorpay_client.payment.refund.call_count == 1
        assert fresh_payment(paid_payment).status == PaymentStatus.REFUNDED

    def test_unknown_order_fails(self, payer, razorpay_client):
        result = PaymentService.refund(payer, "order_missing")

        assert result.error_code == PaymentErrorCode.PAYMENT_NOT_FOUND


# =============================================================================
# PaymentService queries
# =============================================================================


class TestPaymentQueries:
    """Tests for list_payments / get_payment."""

    def test_list_includes_made_and_received(self, payer, payee, outsider):
        made = PaymentFactory(payer=payer, payee=payee)
        received = PaymentFactory(payer=outsider, payee=payer)
        PaymentFactory(payer=outsider, payee=payee)

        payments = set(PaymentService.list_payments(payer))

        assert payments == {made, received}

    def test_get_payment_for_participant(self, payee, payment):
        result = PaymentService.get_payment(payment.order_id, payee)

        assert result.data == payment

    def test_get_payment_hidden_from_outsider(self, outsider, payment):
        result = PaymentService.get_payment(payment.order_id, outsider)

        assert result.error_code == PaymentErrorCode.NOT_PARTICIPANT

    def test_get_unknown_payment(self, payer):
        result = PaymentService.get_payment("order_missing", payer)

        assert result.error_code == PaymentErrorCode.PAYMENT_NOT_FOUND


# =============================================================================
# WebhookService.record_event
# =============================================================================


class TestRecordEvent:
    """
    Tests for WebhookService.record_event().

    Verifies:
    - Signed bodies are stored once per event id
    - Unsigned or malformed bodies are rejected without storing anything
    """

    def body(self, order_id="order_1", payment_id="pay_1") -> bytes:
        return json.dumps(
            payment_payload(WebhookEventType.PAYMENT_CAPTURED, order_id, payment_id)
        ).encode()

    def test_stores_new_event(self, db, webhook_signature):
        body = self.body()

        result = WebhookService.record_event(body, webhook_signature(body), event_id="evt_1")

        assert result.success
        event, created = result.data
        assert created is True
        assert event.event_id == "evt_1"
        assert event.event_type == WebhookEventType.PAYMENT_CAPTURED
        assert event.payload["payload"]["payment"]["entity"]["id"] == "pay_1"

    def test_redelivery_is_not_stored_twice(self, db, webhook_signature):
        body = self.body()
        WebhookService.record_event(body, webhook_signature(body), event_id="evt_1")

        result = WebhookService.record_event(body, webhook_signature(body), event_id="evt_1")

        event, created = result.data
        assert created is False
        assert WebhookEvent.objects.count() == 1

    def test_event_id_falls_back_to_body_hash(self, db, webhook_signature):
        body = self.body()

        result = WebhookService.record_event(body, webhook_signature(body))

        event, _ = result.data
        assert event.event_id == hashlib.sha256(body).hexdigest()

    def test_invalid_signature_rejected(self, db, webhook_signature):
        body = self.body()

        result = WebhookService.record_event(body, webhook_signature(b"other"), event_id="evt_1")

        assert result.error_code == PaymentErrorCode.INVALID_SIGNATURE
        assert not WebhookEvent.objects.exists()

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"payload": {}}'])
    def test_malformed_body_rejected(self, db, webhook_signature, body):
        result = WebhookService.record_event(body, webhook_signature(body), event_id="evt_1")

        assert result.error_code == "INVALID_PAYLOAD"
        assert not WebhookEvent.objects.exists()


# =============================================================================
# WebhookService.dispatch
# =============================================================================


class TestDispatch:
    """
    Tests for WebhookService.dispatch().

    Verifies:
    - payment.captured marks the payment paid once
    - payment.failed marks a pending payment failed, never a paid one
    - Unknown orders and unhandled events are acknowledged, not failed
    """

    def event_for(self, payment, event_type, payment_id="pay_Hook123"):
        return WebhookEventFactory(
            event_type=event_type,
            payload=payment_payload(event_type, payment.order_id, payment_id),
        )

    def test_captured_marks_paid(self, payer, payee, payment):
        event = self.event_for(payment, WebhookEventType.PAYMENT_CAPTURED)

        result = WebhookService.dispatch(event)

        assert result.data == "paid"
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.PAID
        assert payment.payment_id == "pay_Hook123"
        [message] = system_messages(SystemMessageEvent.PAYMENT_RECEIVED)
        assert message.chat == chat_between(payer, payee)

    def test_captured_after_checkout_verification_is_duplicate(
        self, payer, payment, checkout_signature
    ):
        """
        Checkout verification and the webhook race; one system message results.

        Why it matters: Razorpay sends payment.captured even when the
        browser already reported the payment.
        """
        PaymentService.verify_payment(
            payer,
            payment.order_id,
            "pay_Hook123",
            checkout_signature(payment.order_id, "pay_Hook123"),
        )
        event = self.event_for(payment, WebhookEventType.PAYMENT_CAPTURED)

        result = WebhookService.dispatch(event)

        assert result.data == "duplicate"
        assert len(system_messages()) == 1

    def test_checkout_verification_after_captured_posts_nothing(
        self, payer, payment, checkout_signature
    ):
        WebhookService.dispatch(self.event_for(payment, WebhookEventType.PAYMENT_CAPTURED))

        result = PaymentService.verify_payment(
            payer,
            payment.order_id,
            "pay_Hook123",
            checkout_signature(payment.order_id, "pay_Hook123"),
        )

        assert result.success
        assert len(system_messages()) == 1

    def test_captured_on_failed_payment_marks_paid(self, payer, payee):
        payment = PaymentFactory(payer=payer, payee=payee, failed=True)

        result = WebhookService.dispatch(
            self.event_for(payment, WebhookEventType.PAYMENT_CAPTURED)
        )

        assert result.data == "paid"

    def test_captured_on_refunded_payment_is_ignored(self, payer, payee):
        payment = PaymentFactory(payer=payer, payee=payee, refunded=True)

        result = WebhookService.dispatch(
            self.event_for(payment, WebhookEventType.PAYMENT_CAPTURED)
        )

        assert result.data == "ignored"
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.REFUNDED

    def test_failed_marks_created_payment_failed(self, payment):
        result = WebhookService.dispatch(self.event_for(payment, WebhookEventType.PAYMENT_FAILED))

        assert result.data == "failed"
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.FAILED

    def test_failed_does_not_downgrade_paid(self, paid_payment):
        result = WebhookService.dispatch(
            self.event_for(paid_payment, WebhookEventType.PAYMENT_FAILED, payment_id="pay_Old")
        )

        assert result.data == "ignored"
        paid_payment = fresh_payment(paid_payment)
        assert paid_payment.status == PaymentStatus.PAID

    def test_unknown_order(self, db):
        event = WebhookEventFactory()

        result = WebhookService.dispatch(event)

        assert result.success
        assert result.data == "unknown_order"

    def test_unhandled_event_type_ignored(self, payment):
        event = WebhookEventFactory(
            event_type="payment.dispute.created",
            payload={"event": "payment.dispute.created", "payload": {}},
        )

        result = WebhookService.dispatch(event)

        assert result.data == "ignored"

    def test_missing_payment_entity_fails(self, db):
        event = WebhookEventFactory(payload={"event": "payment.captured", "payload": {}})

        result = WebhookService.dispatch(event)

        assert not result.success
        assert result.error_code == "INVALID_PAYLOAD"
