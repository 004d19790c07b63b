"""
Factory Boy factories for payment models.

Usage:
    from payments.tests.factories import PaymentFactory, WebhookEventFactory

    # Order created, not yet paid
    payment = PaymentFactory(payer=client, payee=freelancer)

    # Paid payment
    payment = PaymentFactory(paid=True)

    # Stored payment.captured webhook for an order
    event = WebhookEventFactory(
        event_type="payment.captured",
        payload=payment_payload("payment.captured", payment.order_id, "pay_123"),
    )
"""

import hashlib
import hmac
import uuid
from decimal import Decimal

import factory
from django.utils import timezone

from authentication.tests.factories import FreelancerFactory, UserFactory
from payments.constants import WebhookEventType
from payments.models import Payment, PaymentStatus, WebhookEvent, WebhookEventStatus

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"
TEST_WEBHOOK_SECRET = "whsec_test_secret"


def hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def fresh_payment(payment: Payment) -> Payment:
    """
    Get a fresh Payment instance from the database.

    django-fsm's protected FSMField doesn't allow state assignment via
    refresh_from_db(), so tests re-read the row instead.
    """
    return Payment.objects.get(pk=payment.pk)


def payment_payload(event: str, order_id: str, payment_id: str, amount_paise: int = 150000) -> dict:
    """Build a Razorpay payment.* webhook body."""
    return {
        "entity": "event",
        "account_id": "acc_test",
        "event": event,
        "contains": ["payment"],
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "entity": "payment",
                    "amount": amount_paise,
                    "currency": "INR",
                    "status": "captured" if event == WebhookEventType.PAYMENT_CAPTURED else "failed",
                    "order_id": order_id,
                    "method": "upi",
                }
            }
        },
        "created_at": 1760000000,
    }


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Payment instances.

    Default creates a CREATED ₹1,500 order from a client to a freelancer.

    Traits:
        paid: Payment verified with a Razorpay payment id
        failed: Checkout failed or signature rejected
        refunded: Paid and then fully refunded
    """

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    order_id = factory.Sequence(lambda n: f"order_test{n:06d}")
    receipt = factory.LazyAttribute(lambda o: f"rcpt_test_{uuid.uuid4().hex[:12]}")
    payer = factory.SubFactory(UserFactory)
    payee = factory.SubFactory(FreelancerFactory)
    gig_id = ""
    amount = Decimal("1500.00")
    currency = "INR"
    status = PaymentStatus.CREATED
    notes = factory.LazyFunction(dict)

    class Params:
        paid = factory.Trait(
            status=PaymentStatus.PAID,
            payment_id=factory.Sequence(lambda n: f"pay_test{n:06d}"),
            paid_at=factory.LazyFunction(timezone.now),
        )
        failed = factory.Trait(status=PaymentStatus.FAILED)
        refund_pending = factory.Trait(
            status=PaymentStatus.REFUND_PENDING,
            payment_id=factory.Sequence(lambda n: f"pay_test{n:06d}"),
            paid_at=factory.LazyFunction(timezone.now),
        )
        refunded = factory.Trait(
            status=PaymentStatus.REFUNDED,
            payment_id=factory.Sequence(lambda n: f"pay_test{n:06d}"),
            paid_at=factory.LazyFunction(timezone.now),
            refund_id=factory.Sequence(lambda n: f"rfnd_test{n:06d}"),
            refunded_amount=factory.SelfAttribute("amount"),
            refunded_at=factory.LazyFunction(timezone.now),
        )


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WebhookEvent instances.

    Default creates a PENDING payment.captured webhook for an unknown order.

    Example:
        event = WebhookEventFactory(
            status=WebhookEventStatus.FAILED,
            error_message="Processing error",
            retry_count=3,
        )
    """

    class Meta:
        model = WebhookEvent
        skip_postgeneration_save = True

    event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = WebhookEventType.PAYMENT_CAPTURED
    payload = factory.LazyAttribute(
        lambda o: payment_payload(o.event_type, "order_unknown", "pay_unknown")
    )
    status = WebhookEventStatus.PENDING


def order_response(amount_paise: int = 150000, receipt: str = "rcpt_1_abc", **overrides) -> dict:
    """A Razorpay order as returned by POST /v1/orders."""
    response = {
        "id": "order_Test123456789",
        "entity": "order",
        "amount": amount_paise,
        "amount_paid": 0,
        "amount_due": amount_paise,
        "currency": "INR",
        "receipt": receipt,
        "status": "created",
        "attempts": 0,
        "notes": {},
        "created_at": 1760000000,
    }
    response.update(overrides)
    return response


def refund_response(payment_id: str, amount_paise: int, **overrides) -> dict:
    """A Razorpay refund as returned by POST /v1/payments/:id/refund."""
    response = {
        "id": "rfnd_Test123456789",
        "entity": "refund",
        "amount": amount_paise,
        "currency": "INR",
        "payment_id": payment_id,
        "notes": {},
        "status": "processed",
        "created_at": 1760000000,
    }
    response.update(overrides)
    return response
