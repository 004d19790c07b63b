"""
Payment services.

This module provides:
- PaymentService: Create Razorpay orders, verify checkout signatures,
  refund, and read a user's payments
- WebhookService: Record and apply Razorpay webhook events

A verified payment posts a "payment_received" system message into the
payer/payee chat (creating the chat if needed); a refund posts
"payment_refunded". Checkout verification and the payment.captured webhook
apply the same transition under a row lock, so only one system message is
ever posted for a payment.

Usage:
    from payments.services import PaymentService

    result = PaymentService.create_order(
        payer=request.user,
        payee_id=freelancer.pk,
        amount=Decimal("1500.00"),
        gig_id="gig-42",
    )
    if result.success:
        payment = result.data
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from django_fsm import TransitionNotAllowed, can_proceed

from core.services import BaseService, ServiceResult

from chat.models import SystemMessageEvent
from chat.services import ChatDirectoryService, MessageStore
from payments.adapters import (
    CreateOrderParams,
    IdempotencyKeyGenerator,
    RazorpayAdapter,
    ReceiptGenerator,
    rupees_to_paise,
)
from payments.constants import PAYMENT_CONFIG, PaymentErrorCode, WebhookEventType
from payments.exceptions import RazorpayError
from payments.models import Payment, PaymentStatus, WebhookEvent

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from authentication.models import User


class PaymentService(BaseService):
    """
    Service for Razorpay payments between a payer and a payee.

    Methods:
        create_order: Create a Razorpay order and its local Payment
        verify_payment: Check the checkout signature and mark paid or failed
        refund: Refund a paid payment
        list_payments: Payments the user made or received
        get_payment: One payment, visible to payer and payee only
    """

    # =========================================================================
    # Orders
    # =========================================================================

    @classmethod
    def create_order(
        cls,
        payer: User,
        payee_id: int,
        amount: Decimal,
        gig_id: str | None = None,
        notes: dict | None = None,
    ) -> ServiceResult[Payment]:
        """
        Create a Razorpay order and the matching Payment record.

        Args:
            payer: User paying
            payee_id: User being paid
            amount: Amount in rupees
            gig_id: Optional gig reference
            notes: Optional extra notes sent to Razorpay

        Returns:
            ServiceResult with the new Payment (status created)

        Error codes:
            SAME_USER: Payer and payee are the same user
            USER_NOT_FOUND: Payee does not exist or is inactive
            INVALID_AMOUNT: Amount out of range or over-precise
            RAZORPAY_*: Gateway errors from the adapter
        """
        if payee_id == payer.pk:
            return ServiceResult.failure(
                "Cannot pay yourself",
                error_code=PaymentErrorCode.SAME_USER,
            )

        User = get_user_model()
        if not User.objects.filter(pk=payee_id, is_active=True).exists():
            return ServiceResult.failure(
                "User not found",
                error_code=PaymentErrorCode.USER_NOT_FOUND,
            )

        amount = Decimal(amount)
        if amount > PAYMENT_CONFIG.MAX_AMOUNT:
            return ServiceResult.failure(
                f"Amount cannot exceed {PAYMENT_CONFIG.MAX_AMOUNT}",
                error_code=PaymentErrorCode.INVALID_AMOUNT,
            )

        gig_id = (gig_id or "").strip()
        order_notes = {str(key): str(value) for key, value in (notes or {}).items()}
        order_notes.update(
            {
                "payer_id": str(payer.pk),
                "payee_id": str(payee_id),
                "gig_id": gig_id,
            }
        )

        try:
            params = CreateOrderParams(
                amount=amount,
                receipt=ReceiptGenerator.generate(payer.pk),
                notes=order_notes,
            )
        except ValueError as e:
            return ServiceResult.failure(str(e), error_code=PaymentErrorCode.INVALID_AMOUNT)

        try:
            order = RazorpayAdapter.create_order(params)
        except RazorpayError as e:
            cls.get_logger().error(
                f"Order creation failed for payer {payer.pk}: {e}",
                extra={"is_retryable": e.is_retryable},
            )
            return ServiceResult.from_exception(e)

        payment = Payment.objects.create(
            order_id=order.id,
            payer=payer,
            payee_id=payee_id,
            gig_id=gig_id,
            amount=params.amount,
            currency=order.currency.upper(),
            receipt=order.receipt or params.receipt,
            notes=order_notes,
        )

        cls.get_logger().info(
            f"User {payer.pk} created order {order.id} for {payment.amount} {payment.currency}"
        )
        return ServiceResult.success(payment)

    # =========================================================================
    # Verification
    # =========================================================================

    @classmethod
    def verify_payment(
        cls,
        user: User,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> ServiceResult[Payment]:
        """
        Verify the signature returned by Razorpay Checkout.

        A valid signature marks the payment paid and posts a
        "payment_received" system message to the payer/payee chat. An
        invalid signature marks a not-yet-paid payment failed. Verifying an
        already paid payment with the same payment id succeeds without a
        second message.

        Error codes:
            PAYMENT_NOT_FOUND: No payment for the order id
            NOT_PAYER: Caller is not the payer
            INVALID_SIGNATURE: Signature does not match
            PAYMENT_MISMATCH: Order already paid by a different payment
            INVALID_STATUS: Payment was refunded
        """
        validation = cls.validate_required(
            order_id=order_id,
            payment_id=payment_id,
            signature=signature,
        )
        if validation is not None:
            return validation

        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(order_id=order_id).first()
            if payment is None:
                return ServiceResult.failure(
                    "Payment not found",
                    error_code=PaymentErrorCode.PAYMENT_NOT_FOUND,
                )
            if payment.payer_id != user.pk:
                return ServiceResult.failure(
                    "Only the payer can verify this payment",
                    error_code=PaymentErrorCode.NOT_PAYER,
                )

            if not RazorpayAdapter.verify_payment_signature(order_id, payment_id, signature):
                if can_proceed(payment.mark_failed):
                    payment.mark_failed()
                    payment.save(update_fields=["status", "updated_at"])
                cls.get_logger().warning(
                    f"Invalid payment signature for order {order_id}",
                    extra={"order_id": order_id, "payment_id": payment_id},
                )
                return ServiceResult.failure(
                    "Payment verification failed",
                    error_code=PaymentErrorCode.INVALID_SIGNATURE,
                )

            if payment.status == PaymentStatus.PAID:
                if payment.payment_id == payment_id:
                    return ServiceResult.success(payment)
                return ServiceResult.failure(
                    "Order was already paid by a different payment",
                    error_code=PaymentErrorCode.PAYMENT_MISMATCH,
                )

            try:
                cls._apply_paid(payment, payment_id)
            except TransitionNotAllowed:
                return ServiceResult.failure(
                    f"Cannot verify a {payment.status} payment",
                    error_code=PaymentErrorCode.INVALID_STATUS,
                )

        return ServiceResult.success(payment)

    @classmethod
    def _apply_paid(cls, payment: Payment, payment_id: str) -> None:
        """
        Mark a locked payment paid and announce it in the chat.

        Raises:
            TransitionNotAllowed: Payment is neither created nor failed
        """
        payment.mark_paid(payment_id)
        payment.save(update_fields=["status", "payment_id", "paid_at", "updated_at"])

        cls.get_logger().info(
            f"Payment {payment_id} for order {payment.order_id} marked paid",
            extra={"order_id": payment.order_id, "payment_id": payment_id},
        )
        cls._post_system_message(
            payment,
            SystemMessageEvent.PAYMENT_RECEIVED,
            {
                "order_id": payment.order_id,
                "payment_id": payment_id,
                "amount": str(payment.amount),
                "currency": payment.currency,
                "gig_id": payment.gig_id,
            },
        )

    @classmethod
    def _post_system_message(cls, payment: Payment, event: str, data: dict) -> None:
        """Append a system message to the payer/payee chat, creating it if needed."""
        chat_result = ChatDirectoryService.get_or_create_chat(
            initiator=payment.payer,
            participant_id=payment.payee_id,
            gig_id=payment.gig_id,
        )
        if not chat_result.success:
            cls.get_logger().warning(
                f"No chat for payment {payment.order_id}, skipping '{event}' message: "
                f"{chat_result.error}"
            )
            return

        chat, _ = chat_result.data
        MessageStore.append_system(chat, event, data)

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def refund(
        cls,
        user: User,
        order_id: str,
        amount: Decimal | None = None,
        reason: str = "",
    ) -> ServiceResult[Payment]:
        """
        Refund a paid payment, fully or partially.

        Either party may request the refund. Three phases:
        1. Under the row lock, check the request and move the payment to
           REFUND_PENDING
        2. Call Razorpay outside the transaction
        3. Under the row lock, record the refund (REFUNDED) or, if Razorpay
           rejected it, return the payment to PAID

        A concurrent request finds REFUND_PENDING in phase 1 and never
        reaches the gateway.

        Error codes:
            PAYMENT_NOT_FOUND: No payment for the order id
            NOT_PARTICIPANT: Caller is neither payer nor payee
            INVALID_STATUS: Payment is not paid, or a refund is in progress
            INVALID_AMOUNT: Amount is not positive or exceeds the payment
            RAZORPAY_*: Gateway errors from the adapter
        """
        # Phase 1: reserve the payment
        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(order_id=order_id).first()
            if payment is None:
                return ServiceResult.failure(
                    "Payment not found",
                    error_code=PaymentErrorCode.PAYMENT_NOT_FOUND,
                )
            if not payment.involves(user):
                return ServiceResult.failure(
                    "Not authorized to refund this payment",
                    error_code=PaymentErrorCode.NOT_PARTICIPANT,
                )

            refund_amount = payment.amount if amount is None else Decimal(amount)
            if refund_amount <= 0 or refund_amount > payment.amount:
                return ServiceResult.failure(
                    f"Refund amount must be between 0.01 and {payment.amount}",
                    error_code=PaymentErrorCode.INVALID_AMOUNT,
                )

            try:
                payment.begin_refund()
            except TransitionNotAllowed:
                return ServiceResult.failure(
                    f"Cannot refund a {payment.status} payment",
                    error_code=PaymentErrorCode.INVALID_STATUS,
                )
            payment.save(update_fields=["status", "updated_at"])

        # Phase 2: call Razorpay outside the transaction
        try:
            refund = RazorpayAdapter.create_refund(
                payment.payment_id,
                amount_paise=None if amount is None else rupees_to_paise(refund_amount),
                notes={
                    "reason": reason or "Refund requested",
                    "requested_by": str(user.pk),
                    "idempotency_key": IdempotencyKeyGenerator.generate("refund", payment.pk),
                },
            )
        except RazorpayError as e:
            cls.get_logger().error(
                f"Refund failed for order {order_id}: {e}",
                extra={"order_id": order_id, "is_retryable": e.is_retryable},
            )
            with transaction.atomic():
                payment = Payment.objects.select_for_update().get(pk=payment.pk)
                payment.cancel_refund()
                payment.save(update_fields=["status", "updated_at"])
            return ServiceResult.from_exception(e)

        # Phase 3: record the refund
        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            payment.mark_refunded(refund.id, refund.amount)
            payment.save(
                update_fields=[
                    "status",
                    "refund_id",
                    "refunded_amount",
                    "refunded_at",
                    "updated_at",
                ]
            )
            cls._post_system_message(
                payment,
                SystemMessageEvent.PAYMENT_REFUNDED,
                {
                    "order_id": payment.order_id,
                    "refund_id": refund.id,
                    "amount": str(refund.amount),
                },
            )

        cls.get_logger().info(
            f"User {user.pk} refunded {refund.amount} on order {order_id} ({refund.id})",
            extra={"order_id": order_id, "refund_id": refund.id},
        )
        return ServiceResult.success(payment)

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def list_payments(cls, user: User) -> QuerySet[Payment]:
        """Payments the user made or received, newest first."""
        return (
            Payment.objects.filter(Q(payer=user) | Q(payee=user))
            .select_related("payer", "payee")
            .order_by("-created_at")
        )

    @classmethod
    def get_payment(cls, order_id: str, user: User) -> ServiceResult[Payment]:
        payment = (
            Payment.objects.select_related("payer", "payee").filter(order_id=order_id).first()
        )
        if payment is None:
            return ServiceResult.failure(
                "Payment not found",
                error_code=PaymentErrorCode.PAYMENT_NOT_FOUND,
            )
        if not payment.involves(user):
            return ServiceResult.failure(
                "Not authorized to view this payment",
                error_code=PaymentErrorCode.NOT_PARTICIPANT,
            )
        return ServiceResult.success(payment)


class WebhookService(BaseService):
    """
    Service for Razorpay webhooks.

    record_event verifies and stores an incoming webhook; dispatch applies a
    stored event to its Payment. Both are idempotent: a redelivered event is
    recognised by its event id, and a transition that already happened is a
    no-op.
    """

    @classmethod
    def record_event(
        cls,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> ServiceResult[tuple[WebhookEvent, bool]]:
        """
        Verify a webhook body and store it.

        Args:
            body: Raw request body, exactly as received
            signature: X-Razorpay-Signature header
            event_id: X-Razorpay-Event-Id header; a hash of the body is used
                when absent

        Returns:
            ServiceResult with (webhook_event, created)

        Error codes:
            INVALID_SIGNATURE: Signature missing or wrong
            INVALID_PAYLOAD: Body is not a JSON event
        """
        if not RazorpayAdapter.verify_webhook_signature(body, signature):
            cls.get_logger().warning("Webhook signature verification failed")
            return ServiceResult.failure(
                "Invalid signature",
                error_code=PaymentErrorCode.INVALID_SIGNATURE,
            )

        try:
            data = json.loads(body)
        except (TypeError, ValueError):
            data = None
        if not isinstance(data, dict) or not data.get("event"):
            return ServiceResult.failure("Invalid event", error_code="INVALID_PAYLOAD")

        event_id = event_id or hashlib.sha256(body).hexdigest()
        webhook_event, created = WebhookEvent.objects.get_or_create(
            event_id=event_id,
            defaults={"event_type": data["event"], "payload": data},
        )

        cls.get_logger().info(
            f"Received Razorpay webhook: {data['event']}",
            extra={"event_id": event_id, "is_new": created},
        )
        return ServiceResult.success((webhook_event, created))

    @classmethod
    def dispatch(cls, webhook_event: WebhookEvent) -> ServiceResult[str]:
        """
        Apply a stored event to its Payment.

        Returns:
            ServiceResult with the outcome: "paid", "failed", "duplicate",
            "ignored" or "unknown_order"
        """
        if webhook_event.event_type not in WebhookEventType.HANDLED:
            return ServiceResult.success("ignored")

        entity = webhook_event.get_payment_entity()
        order_id = entity.get("order_id")
        payment_id = entity.get("id")
        if not order_id or not payment_id:
            return ServiceResult.failure(
                "Webhook payload has no payment entity",
                error_code="INVALID_PAYLOAD",
            )

        payment = Payment.objects.select_for_update().filter(order_id=order_id).first()
        if payment is None:
            cls.get_logger().warning(
                f"Webhook {webhook_event.event_type} for unknown order {order_id}"
            )
            return ServiceResult.success("unknown_order")

        if webhook_event.event_type == WebhookEventType.PAYMENT_CAPTURED:
            if payment.status == PaymentStatus.PAID and payment.payment_id == payment_id:
                return ServiceResult.success("duplicate")
            try:
                PaymentService._apply_paid(payment, payment_id)
            except TransitionNotAllowed:
                cls.get_logger().info(
                    f"Ignoring {webhook_event.event_type} for {payment.status} order {order_id}"
                )
                return ServiceResult.success("ignored")
            return ServiceResult.success("paid")

        try:
            payment.mark_failed()
        except TransitionNotAllowed:
            cls.get_logger().info(
                f"Ignoring {webhook_event.event_type} for {payment.status} order {order_id}"
            )
            return ServiceResult.success("ignored")
        payment.save(update_fields=["status", "updated_at"])
        cls.get_logger().info(f"Payment {payment_id} for order {order_id} marked failed")
        return ServiceResult.success("failed")
